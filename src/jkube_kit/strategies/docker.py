"""Builds images with the local Docker daemon."""
from __future__ import annotations

import logging

from ..config import BuildStrategyKind, ImageConfiguration, RegistryConfig
from ..registry import create_auth_config, get_applicable_pull_registry_from
from .base import BuildStrategy, prepare_build_context

_LOG = logging.getLogger(__name__)


class DockerBuildStrategy(BuildStrategy):
    kind = BuildStrategyKind.DOCKER
    label = "Local Docker"

    def build_single_image(self, image: ImageConfiguration) -> None:
        build = image.build
        docker = self.hub.docker_access
        summary = self.hub.summary
        context_dir, dockerfile = prepare_build_context(image, self.hub.configuration)
        if not build.is_dockerfile_mode:
            self._pull_base_image(build.base_image)

        image_name = image.image_name
        _LOG.info("%s: Building image from %s", image.description, dockerfile)
        docker.build_image(
            image.name,
            context_dir,
            dockerfile,
            build_args=build.build_args,
            platforms=build.platforms,
            tags=[image_name.with_tag(tag).full_name() for tag in build.tags],
            no_cache=build.no_cache,
        )
        _LOG.info("%s: Built image %s", image.description, image.name)

        summary.set_build_strategy(self.label)
        if build.base_image:
            summary.set_base_image_name_image_summary(image.name, build.base_image)
        summary.set_dockerfile_image_summary(image.name, str(dockerfile))
        image_id = docker.image_id(image.name)
        if image_id:
            summary.set_image_sha_image_summary(image.name, image_id)

    def _pull_base_image(self, base_image: str) -> None:
        docker = self.hub.docker_access
        pull_manager = self.hub.pull_manager
        if not pull_manager.requires_pull(base_image, docker.has_image(base_image)):
            _LOG.debug("Base image %s does not need to be pulled", base_image)
            return
        registry_config = self.hub.configuration.registry_config
        registry = get_applicable_pull_registry_from(base_image, registry_config)
        auth = create_auth_config(False, registry_config, None, registry, environ=self.hub.environ)
        docker.pull_image(base_image, auth, registry)
        pull_manager.pulled(base_image)

    def push_single_image(
        self,
        image: ImageConfiguration,
        retries: int,
        registry_config: RegistryConfig,
        skip_tag: bool,
    ) -> None:
        self.hub.registry_service.push_image(image, retries, registry_config, skip_tag)
