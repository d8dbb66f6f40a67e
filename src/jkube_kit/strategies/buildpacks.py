"""Cloud Native Buildpacks builds through the ``pack`` CLI."""
from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from ..config import BuildConfiguration, BuildStrategyKind, ImageConfiguration, ImagePullPolicy, RegistryConfig
from .base import BuildStrategy

_LOG = logging.getLogger(__name__)

DEFAULT_BUILDER_IMAGE = "paketobuildpacks/builder:base"

_PULL_POLICIES: Dict[ImagePullPolicy, str] = {
    ImagePullPolicy.IF_NOT_PRESENT: "if-not-present",
    ImagePullPolicy.ALWAYS: "always",
    ImagePullPolicy.NEVER: "never",
}


def pack_home(environ: Optional[Mapping[str, str]] = None) -> Path:
    environ = os.environ if environ is None else environ
    home = environ.get("PACK_HOME")
    return Path(home) if home else Path.home() / ".pack"


def resolve_builder_image(build: BuildConfiguration, pack_directory: Path) -> str:
    """Builder image: build configuration, then the pack CLI config, then the default."""

    if build.buildpacks_builder_image:
        return build.buildpacks_builder_image
    config_file = pack_directory / "config.toml"
    if config_file.is_file():
        with config_file.open("rb") as stream:
            builder = tomllib.load(stream).get("default-builder-image")
        if builder:
            return builder
    return DEFAULT_BUILDER_IMAGE


class BuildpacksBuildStrategy(BuildStrategy):
    kind = BuildStrategyKind.BUILDPACKS
    label = "Buildpacks"

    def pack_build_command(self, image: ImageConfiguration) -> List[str]:
        build = image.build
        builder = resolve_builder_image(build, pack_home(self.hub.environ))
        policy = ImagePullPolicy(build.image_pull_policy) if build.image_pull_policy else self.hub.pull_manager.policy
        cmd = [
            "pack",
            "build",
            image.name,
            "--builder",
            builder,
            "--path",
            str(self.hub.base_directory),
            "--creation-time",
            "now",
            "--pull-policy",
            _PULL_POLICIES[policy],
        ]
        for key, value in build.env.items():
            cmd.extend(["--env", f"{key}={value}"])
        image_name = image.image_name
        for tag in build.tags:
            cmd.extend(["--tag", image_name.with_tag(tag).full_name()])
        for volume in build.volumes:
            cmd.extend(["--volume", volume])
        if build.no_cache:
            cmd.append("--clear-cache")
        return cmd

    def build_single_image(self, image: ImageConfiguration) -> None:
        cmd = self.pack_build_command(image)
        _LOG.info("Delegating container image building process to BuildPacks")
        self.hub.runner.run_streaming(cmd, on_output=_LOG.info, check=True)
        summary = self.hub.summary
        summary.set_build_strategy(self.label)
        summary.set_base_image_name_image_summary(image.name, cmd[cmd.index("--builder") + 1])

    def push_single_image(
        self,
        image: ImageConfiguration,
        retries: int,
        registry_config: RegistryConfig,
        skip_tag: bool,
    ) -> None:
        self.hub.registry_service.push_image(image, retries, registry_config, skip_tag)
