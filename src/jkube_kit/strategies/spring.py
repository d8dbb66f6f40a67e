"""Delegates image builds to the Spring Boot Maven or Gradle plugin."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List

from ..config import BuildStrategyKind, ImageConfiguration, JavaProject, RegistryConfig
from .base import BuildStrategy

_LOG = logging.getLogger(__name__)

SPRING_BOOT_GROUP_ID = "org.springframework.boot"
SPRING_BOOT_MAVEN_PLUGIN_ARTIFACT_ID = "spring-boot-maven-plugin"
SPRING_BOOT_GRADLE_PLUGIN_ARTIFACT_ID = "org.springframework.boot.gradle.plugin"
SPRING_BOOT_BUILD_IMAGE_GOAL = "org.springframework.boot:spring-boot-maven-plugin:build-image"
SPRING_BOOT_BUILD_IMAGE_TASK = "bootBuildImage"


def _major_version(version: str) -> int:
    match = re.match(r"\s*(\d+)", version)
    return int(match.group(1)) if match else 0


def is_spring_boot_build_image_supported(project: JavaProject) -> bool:
    """Spring Boot 3 or later with its Maven or Gradle plugin applied."""

    version = project.dependency_version(SPRING_BOOT_GROUP_ID)
    if version is None or _major_version(version) < 3:
        return False
    return project.has_plugin(SPRING_BOOT_GROUP_ID, SPRING_BOOT_MAVEN_PLUGIN_ARTIFACT_ID) or project.has_plugin(
        SPRING_BOOT_GROUP_ID, SPRING_BOOT_GRADLE_PLUGIN_ARTIFACT_ID
    )


def _applicable_binary(base_directory: Path, wrapper: str, default: str) -> str:
    return wrapper if (base_directory / wrapper).exists() else default


class SpringBuildStrategy(BuildStrategy):
    kind = BuildStrategyKind.SPRING
    label = "Spring Boot"

    def is_applicable(self) -> bool:
        configured = self.hub.build_service_config.build_strategy
        if configured is not None and configured != self.kind:
            return False
        return is_spring_boot_build_image_supported(self.hub.configuration.project)

    def build_command(self, image: ImageConfiguration) -> List[str]:
        project = self.hub.configuration.project
        base_directory = self.hub.base_directory
        if project.has_plugin(SPRING_BOOT_GROUP_ID, SPRING_BOOT_GRADLE_PLUGIN_ARTIFACT_ID):
            cmd = [
                _applicable_binary(base_directory, "./gradlew", "gradle"),
                SPRING_BOOT_BUILD_IMAGE_TASK,
                f"--imageName={image.name}",
            ]
            cmd.extend(arg for arg in project.command_execution_args if "-" in arg)
            return cmd
        cmd = [
            _applicable_binary(base_directory, "./mvnw", "mvn"),
            SPRING_BOOT_BUILD_IMAGE_GOAL,
            "-f",
            str(base_directory.absolute()),
            f"-Dspring-boot.build-image.imageName={image.name}",
        ]
        cmd.extend(arg for arg in project.command_execution_args if ":" not in arg)
        return cmd

    def build_single_image(self, image: ImageConfiguration) -> None:
        _LOG.info("Delegating container image building process to Spring Boot")
        self.hub.runner.run_streaming(
            self.build_command(image),
            cwd=self.hub.base_directory,
            on_output=_LOG.info,
            check=True,
        )
        self.hub.summary.set_build_strategy(self.label)

    def push_single_image(
        self,
        image: ImageConfiguration,
        retries: int,
        registry_config: RegistryConfig,
        skip_tag: bool,
    ) -> None:
        self.hub.registry_service.push_image(image, retries, registry_config, skip_tag)
