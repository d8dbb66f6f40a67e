"""OpenShift binary builds (S2I or Docker strategy) started from a local archive."""
from __future__ import annotations

import logging
import tarfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import BuildStrategyKind, ImageConfiguration, RegistryConfig
from ..exceptions import ConfigurationError
from ..kube import ClusterClient
from ..resources.base import ResourceDefinition
from .base import BuildDirs, BuildStrategy, prepare_build_context

_LOG = logging.getLogger(__name__)

BUILD_CONFIG_API = "build.openshift.io/v1"
IMAGE_STREAM_API = "image.openshift.io/v1"
ARCHIVE_NAME = "docker-build.tar"


class S2IBuildStrategy(BuildStrategy):
    kind = BuildStrategyKind.S2I
    label = "S2I"

    @property
    def cluster(self) -> ClusterClient:
        if self.hub.cluster is None:
            raise ConfigurationError("The s2i build strategy requires a cluster connection")
        return self.hub.cluster

    @property
    def namespace(self) -> Optional[str]:
        return self.cluster.context.namespace

    def build_config_name(self, image: ImageConfiguration) -> str:
        return image.image_name.simple_name + self.hub.build_service_config.s2i_build_name_suffix

    def build_single_image(self, image: ImageConfiguration) -> None:
        service_config = self.hub.build_service_config
        summary = self.hub.summary
        image_name = image.image_name
        bc_name = self.build_config_name(image)
        image_stream = image_name.simple_name

        context_dir, dockerfile = prepare_build_context(image, self.hub.configuration)
        archive = self.create_archive(image, context_dir, dockerfile)

        if service_config.recreate.is_build_config:
            _LOG.info("Deleting BuildConfig %s before rebuilding", bc_name)
            self.cluster.delete(BUILD_CONFIG_API, "BuildConfig", bc_name, self.namespace)
        if service_config.recreate.is_image_stream:
            _LOG.info("Deleting ImageStream %s before rebuilding", image_stream)
            self.cluster.delete(IMAGE_STREAM_API, "ImageStream", image_stream, self.namespace)

        build_objects: List[ResourceDefinition] = []
        if service_config.build_output_kind == "ImageStreamTag":
            build_objects.append(self.image_stream(image_stream))
        build_objects.append(self.build_config(image, bc_name, dockerfile.name))
        if service_config.enricher_task is not None:
            service_config.enricher_task(build_objects)
        for build_object in build_objects:
            self.cluster.apply(build_object, self.namespace)
        summary.set_openshift_build_config_name(bc_name)

        cmd = ["oc", "start-build", bc_name, f"--from-archive={archive}", "--follow", "--wait"]
        if self.namespace:
            cmd.extend(["--namespace", self.namespace])
        _LOG.info("Starting S2I build %s", bc_name)
        self.hub.runner.run_streaming(cmd, on_output=_LOG.info, check=True)

        summary.set_build_strategy(self.label)
        if image.build.base_image:
            summary.set_base_image_name_image_summary(image.name, image.build.base_image)
        summary.set_image_stream_used_image_summary(image.name, f"{image_stream}:{image_name.tag or 'latest'}")

    def create_archive(self, image: ImageConfiguration, context_dir: Path, dockerfile: Path) -> Path:
        dirs = BuildDirs.for_image(image.name, self.hub.configuration).create()
        archive = dirs.tmp / ARCHIVE_NAME
        with tarfile.open(archive, "w") as tar:
            tar.add(str(context_dir), arcname=".")
            if dockerfile.parent.resolve() != context_dir.resolve():
                tar.add(str(dockerfile), arcname=dockerfile.name)
        return archive

    def image_stream(self, name: str) -> ResourceDefinition:
        return ResourceDefinition(
            api_version=IMAGE_STREAM_API,
            kind="ImageStream",
            metadata={"name": name},
            spec={"lookupPolicy": {"local": self.hub.build_service_config.s2i_image_stream_lookup_policy_local}},
        )

    def build_config(self, image: ImageConfiguration, name: str, dockerfile_name: str) -> ResourceDefinition:
        service_config = self.hub.build_service_config
        build = image.build
        image_name = image.image_name
        env = [{"name": key, "value": value} for key, value in build.env.items()]

        if build.is_dockerfile_mode:
            docker_strategy: Dict[str, Any] = {"dockerfilePath": dockerfile_name, "noCache": build.no_cache}
            if env:
                docker_strategy["env"] = env
            if build.build_args:
                docker_strategy["buildArgs"] = [{"name": k, "value": v} for k, v in build.build_args.items()]
            if build.base_image:
                docker_strategy["from"] = {"kind": "DockerImage", "name": build.base_image}
            if service_config.force_pull:
                docker_strategy["forcePull"] = True
            if service_config.openshift_pull_secret:
                docker_strategy["pullSecret"] = {"name": service_config.openshift_pull_secret}
            strategy: Dict[str, Any] = {"type": "Docker", "dockerStrategy": docker_strategy}
        else:
            source_strategy: Dict[str, Any] = {
                "from": {"kind": "DockerImage", "name": build.base_image},
                "forcePull": service_config.force_pull,
            }
            if env:
                source_strategy["env"] = env
            if service_config.openshift_pull_secret:
                source_strategy["pullSecret"] = {"name": service_config.openshift_pull_secret}
            strategy = {"type": "Source", "sourceStrategy": source_strategy}

        if service_config.build_output_kind == "DockerImage":
            output: Dict[str, Any] = {"to": {"kind": "DockerImage", "name": image.name}}
            if service_config.openshift_push_secret:
                output["pushSecret"] = {"name": service_config.openshift_push_secret}
        else:
            output = {"to": {"kind": "ImageStreamTag", "name": f"{image_name.simple_name}:{image_name.tag or 'latest'}"}}

        return ResourceDefinition(
            api_version=BUILD_CONFIG_API,
            kind="BuildConfig",
            metadata={"name": name},
            spec={"source": {"type": "Binary"}, "strategy": strategy, "output": output},
        )

    def push_single_image(
        self,
        image: ImageConfiguration,
        retries: int,
        registry_config: RegistryConfig,
        skip_tag: bool,
    ) -> None:
        _LOG.info("%s: image is pushed to the cluster registry by the S2I build", image.description)
