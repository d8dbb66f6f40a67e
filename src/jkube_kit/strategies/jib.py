"""Daemonless builds through the Jib CLI."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..config import BuildStrategyKind, ImageConfiguration, RegistryConfig
from ..docker import is_auth_failure
from ..exceptions import AuthenticationError, ConfigurationError, TransientRegistryError
from ..image_name import ImageName
from ..registry import AuthConfig, create_auth_config, get_applicable_pull_registry_from, get_applicable_push_registry_from
from ..resources.loader import yaml_writer
from .base import BuildDirs, BuildStrategy

_LOG = logging.getLogger(__name__)

BUILD_FILE_NAME = "jib.yaml"
TAR_NAME = "jib-image.tar"


def jib_build_file(image: ImageConfiguration, base_image: Optional[str], base_directory: Path) -> Dict[str, Any]:
    """Jib CLI build file equivalent to ``image``'s build configuration."""

    build = image.build
    document: Dict[str, Any] = {"apiVersion": "jib/v1alpha1", "kind": "BuildFile"}
    if base_image:
        document["from"] = {"image": base_image}
        if build.platforms:
            platforms = []
            for platform in build.platforms:
                os_name, _, architecture = platform.partition("/")
                platforms.append({"os": os_name, "architecture": architecture or "amd64"})
            document["from"]["platforms"] = platforms
    document["format"] = "Docker"
    if build.env:
        document["environment"] = dict(build.env)
    if build.labels:
        document["labels"] = dict(build.labels)
    if build.volumes:
        document["volumes"] = list(build.volumes)
    if build.ports:
        document["exposedPorts"] = list(build.ports)
    if build.user:
        document["user"] = build.user
    if build.workdir:
        document["workingDirectory"] = build.workdir
    if build.entrypoint:
        document["entrypoint"] = list(build.entrypoint)
    if build.cmd:
        document["cmd"] = list(build.cmd)
    entries: List[Dict[str, Any]] = []
    for index, layer in enumerate(build.assembly):
        source = layer.source if layer.source.is_absolute() else base_directory / layer.source
        dest = layer.target_dir.rstrip("/") or "/"
        if source.is_file():
            dest = f"{dest}/{source.name}"
        entries.append({"name": layer.name or f"layer-{index}", "files": [{"src": str(source), "dest": dest}]})
    if entries:
        document["layers"] = {"entries": entries}
    return document


def _credential_args(prefix: str, auth: Optional[AuthConfig]) -> List[str]:
    if auth is None:
        return []
    return [f"--{prefix}-username={auth.username}", f"--{prefix}-password={auth.password}"]


class JibBuildStrategy(BuildStrategy):
    kind = BuildStrategyKind.JIB
    label = "Jib"

    def _base_image(self, image: ImageConfiguration) -> Tuple[Optional[str], Optional[AuthConfig]]:
        """Fully qualified base image and the credentials needed to pull it."""

        base_image = image.build.base_image
        if not base_image:
            return None, None
        registry_config = self.hub.configuration.registry_config
        pull_registry = get_applicable_pull_registry_from(base_image, registry_config)
        auth = create_auth_config(False, registry_config, None, pull_registry, environ=self.hub.environ)
        return ImageName.parse(base_image).full_name(pull_registry), auth

    def _write_build_file(self, image: ImageConfiguration, base_image: Optional[str]) -> Path:
        dirs = BuildDirs.for_image(image.name, self.hub.configuration).create()
        build_file = dirs.tmp / BUILD_FILE_NAME
        with build_file.open("w") as stream:
            yaml_writer().dump(jib_build_file(image, base_image, self.hub.base_directory), stream)
        return build_file

    def build_single_image(self, image: ImageConfiguration) -> None:
        if image.build.is_dockerfile_mode:
            raise ConfigurationError("Dockerfile mode is not supported with JIB build strategy")
        _LOG.info("JIB image build started")
        configuration = self.hub.configuration
        image = image.with_registry(get_applicable_push_registry_from(image, configuration.registry_config))
        base_image, pull_auth = self._base_image(image)
        build_file = self._write_build_file(image, base_image)
        tar = BuildDirs.for_image(image.name, configuration).tmp / TAR_NAME
        cmd = [
            "jib",
            "build",
            f"--build-file={build_file}",
            f"--context={self.hub.base_directory}",
            f"--target=tar://{tar}",
            f"--name={image.name}",
        ]
        cmd.extend(_credential_args("from", pull_auth))
        self.hub.runner.run_streaming(cmd, on_output=_LOG.info, check=True)
        _LOG.info(" %s successfully built", tar)

        summary = self.hub.summary
        summary.set_build_strategy(self.label)
        if base_image:
            summary.set_base_image_name_image_summary(image.name, base_image)

    def push_single_image(
        self,
        image: ImageConfiguration,
        retries: int,
        registry_config: RegistryConfig,
        skip_tag: bool,
    ) -> None:
        push_registry = get_applicable_push_registry_from(image, registry_config)
        image = image.with_registry(push_registry)
        _LOG.info("Pushing image: %s", image.image_name.full_name())
        base_image, pull_auth = self._base_image(image)
        build_file = self._write_build_file(image, base_image)
        push_auth = create_auth_config(True, registry_config, image.image_name.user, push_registry, environ=self.hub.environ)

        cmd = [
            "jib",
            "build",
            f"--build-file={build_file}",
            f"--context={self.hub.base_directory}",
            f"--target=registry://{image.name}",
        ]
        if not skip_tag and image.build.tags:
            cmd.append(f"--additional-tags={','.join(image.build.tags)}")
        cmd.extend(_credential_args("from", pull_auth))
        cmd.extend(_credential_args("to", push_auth))

        attempt = 0
        while True:
            result = self.hub.runner.run_streaming(cmd, on_output=_LOG.info)
            if result.success:
                break
            if is_auth_failure(result):
                raise AuthenticationError(f"Registry {push_registry or 'docker.io'} rejected the push of {image.name}", push_registry)
            if attempt >= retries:
                raise TransientRegistryError(f"Unable to push {image.name}: {result.output.strip()}")
            attempt += 1
            _LOG.warning("Push of %s failed, retrying (%d/%d)", image.name, attempt, retries)
        self.hub.summary.set_push_registry(push_registry)
