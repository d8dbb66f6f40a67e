"""Common build/push contract shared by every build strategy."""
from __future__ import annotations

import json
import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from kubernetes.client import ApiException

from ..config import (
    BuildConfiguration,
    BuildServiceConfig,
    BuildStrategyKind,
    ImageConfiguration,
    ImagePullPolicy,
    JKubeConfiguration,
    RegistryConfig,
)
from ..docker import DockerAccess, RegistryService
from ..exceptions import (
    AuthenticationError,
    CommandError,
    ConfigurationError,
    JKubeServiceError,
)
from ..kube import ClusterClient
from ..registry import ImagePullManager
from ..runner import CommandRunner
from ..summary import SummaryRecorder
from ..utils import sanitize_file_name

_LOG = logging.getLogger(__name__)

_UNEXPECTED_ERRORS = (OSError, subprocess.SubprocessError, ApiException, CommandError)


@dataclass
class BuildServiceHub:
    """Everything a strategy needs for one invocation."""

    configuration: JKubeConfiguration
    build_service_config: BuildServiceConfig
    summary: SummaryRecorder
    runner: CommandRunner = field(default_factory=CommandRunner)
    docker_access: Optional[DockerAccess] = None
    cluster: Optional[ClusterClient] = None
    environ: Optional[Dict[str, str]] = None
    pull_manager: Optional[ImagePullManager] = None

    def __post_init__(self) -> None:
        if self.docker_access is None:
            self.docker_access = DockerAccess(self.runner)
        if self.pull_manager is None:
            policy = (
                ImagePullPolicy.ALWAYS
                if self.build_service_config.force_pull
                else self.build_service_config.image_pull_policy
            )
            self.pull_manager = ImagePullManager(policy)

    @property
    def registry_service(self) -> RegistryService:
        return RegistryService(self.docker_access, self.summary, self.environ)

    @property
    def base_directory(self) -> Path:
        return self.configuration.base_directory


@dataclass(frozen=True)
class BuildDirs:
    """Per-image working directories below the build directory."""

    root: Path

    @property
    def output(self) -> Path:
        return self.root / "build"

    @property
    def tmp(self) -> Path:
        return self.root / "tmp"

    @classmethod
    def for_image(cls, image_name: str, configuration: JKubeConfiguration) -> "BuildDirs":
        return cls(configuration.resolved_build_directory / sanitize_file_name(image_name.replace("/", "-")))

    def create(self) -> "BuildDirs":
        self.output.mkdir(parents=True, exist_ok=True)
        self.tmp.mkdir(parents=True, exist_ok=True)
        return self


def generate_dockerfile(build: BuildConfiguration, layer_dirs: Iterable[Tuple[str, str]]) -> str:
    """Render a Dockerfile for an assembly build; ``layer_dirs`` pairs a context dir with its target."""

    if not build.base_image:
        raise ConfigurationError("An assembly build requires a base image ('from')")
    lines: List[str] = [f"FROM {build.base_image}"]
    for key, value in build.labels.items():
        lines.append(f"LABEL {key}={json.dumps(value)}")
    for key, value in build.env.items():
        lines.append(f"ENV {key}={json.dumps(value)}")
    for port in build.ports:
        lines.append(f"EXPOSE {port}")
    if build.volumes:
        lines.append(f"VOLUME {json.dumps(build.volumes)}")
    if build.workdir:
        lines.append(f"WORKDIR {build.workdir}")
    for source, target in layer_dirs:
        lines.append(f"COPY {source} {target.rstrip('/')}/")
    if build.user:
        lines.append(f"USER {build.user}")
    if build.entrypoint:
        lines.append(f"ENTRYPOINT {json.dumps(build.entrypoint)}")
    if build.cmd:
        lines.append(f"CMD {json.dumps(build.cmd)}")
    return "\n".join(lines) + "\n"


def prepare_build_context(image: ImageConfiguration, configuration: JKubeConfiguration) -> Tuple[Path, Path]:
    """Return ``(context_dir, dockerfile)`` for ``image``.

    Dockerfile mode uses the configured context directory (the project base
    directory by default). Assembly mode copies every layer into the per-image
    build directory next to a generated Dockerfile.
    """

    build = image.build
    if build is None:
        raise ConfigurationError(f"Image {image.name} has no build configuration")
    base_directory = configuration.base_directory
    if build.is_dockerfile_mode:
        context_dir = build.context_dir or base_directory
        if not context_dir.is_absolute():
            context_dir = base_directory / context_dir
        dockerfile = Path(build.docker_file)
        if not dockerfile.is_absolute():
            dockerfile = context_dir / dockerfile
        if not dockerfile.is_file():
            raise ConfigurationError(f"Dockerfile {dockerfile} for image {image.name} does not exist")
        return context_dir, dockerfile

    dirs = BuildDirs.for_image(image.name, configuration).create()
    layer_dirs: List[Tuple[str, str]] = []
    for index, layer in enumerate(build.assembly):
        source = layer.source if layer.source.is_absolute() else base_directory / layer.source
        layer_name = layer.name or f"layer-{index}"
        destination = dirs.output / layer_name
        if destination.exists():
            shutil.rmtree(destination)
        if source.is_dir():
            shutil.copytree(source, destination)
        else:
            destination.mkdir(parents=True)
            shutil.copy2(source, destination / source.name)
        layer_dirs.append((layer_name, layer.target_dir))
    dockerfile = dirs.output / "Dockerfile"
    dockerfile.write_text(generate_dockerfile(build, layer_dirs))
    return dirs.output, dockerfile


class BuildStrategy(ABC):
    """Uniform build/push contract; subclasses implement the single-image steps."""

    kind: BuildStrategyKind
    label: str = ""

    def __init__(self, hub: BuildServiceHub) -> None:
        self.hub = hub

    def is_applicable(self) -> bool:
        return self.hub.build_service_config.build_strategy == self.kind

    def build(self, image: ImageConfiguration) -> None:
        if image.is_build_skipped:
            _LOG.info("%s: Skipped building", image.description)
            return
        try:
            self.build_single_image(image)
        except (AuthenticationError, ConfigurationError, JKubeServiceError):
            raise
        except _UNEXPECTED_ERRORS as exc:
            raise JKubeServiceError(f"Error while trying to build the image {image.name}: {exc}") from exc

    def push(
        self,
        images: Iterable[ImageConfiguration],
        retries: int,
        registry_config: RegistryConfig,
        skip_tag: bool,
    ) -> None:
        for image in images:
            if image.is_build_skipped:
                _LOG.info("%s: Skipped pushing", image.description)
                continue
            try:
                self.push_single_image(image, retries, registry_config, skip_tag)
            except (AuthenticationError, ConfigurationError, JKubeServiceError):
                raise
            except _UNEXPECTED_ERRORS as exc:
                raise JKubeServiceError(f"Error while trying to push the image {image.name}: {exc}") from exc

    @abstractmethod
    def build_single_image(self, image: ImageConfiguration) -> None:
        ...

    @abstractmethod
    def push_single_image(
        self,
        image: ImageConfiguration,
        retries: int,
        registry_config: RegistryConfig,
        skip_tag: bool,
    ) -> None:
        ...

    def post_process(self) -> None:
        """Hook run once after all images were built."""
