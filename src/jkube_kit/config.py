"""Configuration models and helpers for jkube_kit."""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ConfigurationError
from .image_name import ImageName

DEFAULT_MANIFEST = Path("META-INF") / "jkube" / "kubernetes.yml"


def _identity(value: str) -> str:
    return value


class ConfigModel(BaseModel):
    """Shared base model for configuration objects."""

    model_config = ConfigDict(populate_by_name=True)


class ClusterContext(ConfigModel):
    """Connection context to interact with a Kubernetes cluster."""

    namespace: Optional[str] = None
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    verify_ssl: bool = True


class RegistryServerConfiguration(ConfigModel):
    """Credentials for one registry server, keyed by ``id``."""

    id: str
    username: Optional[str] = None
    password: Optional[str] = None
    configuration: Dict[str, Any] = Field(default_factory=dict)


class RegistryConfig(ConfigModel):
    """Registry settings for one direction (pull or push)."""

    registry: Optional[str] = None
    settings: List[RegistryServerConfiguration] = Field(default_factory=list)
    skip_extended_auth: bool = Field(default=False, alias="skipExtendedAuth")
    auth_config: Optional[Dict[str, Any]] = Field(default=None, alias="authConfig")
    password_decryption: Callable[[str], str] = Field(default=_identity, exclude=True)


class ImagePullPolicy(str, Enum):
    IF_NOT_PRESENT = "IfNotPresent"
    ALWAYS = "Always"
    NEVER = "Never"


class BuildStrategyKind(str, Enum):
    DOCKER = "docker"
    S2I = "s2i"
    JIB = "jib"
    BUILDPACKS = "buildpacks"
    SPRING = "spring"


class BuildRecreateMode(str, Enum):
    """Which OpenShift build objects to delete before an S2I build."""

    NONE = "none"
    BC = "bc"
    IS = "is"
    ALL = "all"

    @property
    def is_build_config(self) -> bool:
        return self in (BuildRecreateMode.BC, BuildRecreateMode.ALL)

    @property
    def is_image_stream(self) -> bool:
        return self in (BuildRecreateMode.IS, BuildRecreateMode.ALL)


class AssemblyLayer(ConfigModel):
    """A directory (or file) copied into the image at ``target_dir``."""

    source: Path
    target_dir: str = Field(default="/deployments", alias="targetDir")
    name: Optional[str] = None


class BuildConfiguration(ConfigModel):
    """How one image is built."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_image: Optional[str] = Field(default=None, alias="from")
    from_ext: Dict[str, str] = Field(default_factory=dict, alias="fromExt")
    docker_file: Optional[str] = Field(default=None, alias="dockerFile")
    context_dir: Optional[Path] = Field(default=None, alias="contextDir")
    assembly: List[AssemblyLayer] = Field(default_factory=list)
    platforms: List[str] = Field(default_factory=list)
    volumes: List[str] = Field(default_factory=list)
    ports: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    labels: Dict[str, str] = Field(default_factory=dict)
    build_args: Dict[str, str] = Field(default_factory=dict, alias="args")
    user: Optional[str] = None
    workdir: Optional[str] = None
    entrypoint: List[str] = Field(default_factory=list)
    cmd: List[str] = Field(default_factory=list)
    skip: bool = False
    no_cache: bool = Field(default=False, alias="noCache")
    image_pull_policy: Optional[str] = Field(default=None, alias="imagePullPolicy")
    buildpacks_builder_image: Optional[str] = Field(default=None, alias="buildpacksBuilderImage")

    @property
    def is_dockerfile_mode(self) -> bool:
        return bool(self.docker_file)

    @property
    def base_image(self) -> Optional[str]:
        return self.from_ext.get("name") or self.from_image


class ImageConfiguration(ConfigModel):
    """A resolved image: name, optional build recipe and registry override."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    alias: Optional[str] = None
    build: Optional[BuildConfiguration] = None
    registry: Optional[str] = None

    @property
    def image_name(self) -> ImageName:
        return ImageName.parse(self.name)

    @property
    def description(self) -> str:
        return f"[{self.name}] \"{self.alias}\"" if self.alias else f"[{self.name}]"

    @property
    def is_build_skipped(self) -> bool:
        return self.build is None or self.build.skip

    def with_registry(self, registry: Optional[str]) -> "ImageConfiguration":
        """Return a copy whose name is prefixed with ``registry`` if it has none."""

        image_name = self.image_name
        if image_name.has_registry or not registry:
            return self
        return self.model_copy(update={"name": image_name.full_name(registry), "registry": registry})


class Dependency(ConfigModel):
    group_id: str = Field(alias="groupId")
    artifact_id: str = Field(alias="artifactId")
    version: Optional[str] = None


class Plugin(ConfigModel):
    group_id: str = Field(alias="groupId")
    artifact_id: str = Field(alias="artifactId")
    version: Optional[str] = None


class JavaProject(ConfigModel):
    """The subset of the build tool's project model the core needs."""

    name: Optional[str] = None
    group_id: Optional[str] = Field(default=None, alias="groupId")
    artifact_id: Optional[str] = Field(default=None, alias="artifactId")
    version: Optional[str] = None
    base_directory: Path = Field(default_factory=Path.cwd, alias="baseDirectory")
    dependencies: List[Dependency] = Field(default_factory=list)
    plugins: List[Plugin] = Field(default_factory=list)
    command_execution_args: List[str] = Field(default_factory=list, alias="commandExecutionArgs")

    def has_plugin(self, group_id: str, artifact_id: str) -> bool:
        return any(p.group_id == group_id and p.artifact_id == artifact_id for p in self.plugins)

    def dependency_version(self, group_id: str) -> Optional[str]:
        """Version of the first dependency with the given group id."""

        for dependency in self.dependencies:
            if dependency.group_id == group_id and dependency.version:
                return dependency.version
        return None


class BuildServiceConfig(ConfigModel):
    """Build settings resolved once per invocation and read-only thereafter."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    build_strategy: Optional[BuildStrategyKind] = Field(default=None, alias="strategy")
    recreate: BuildRecreateMode = BuildRecreateMode.NONE
    force_pull: bool = Field(default=False, alias="forcePull")
    image_pull_policy: ImagePullPolicy = Field(default=ImagePullPolicy.IF_NOT_PRESENT, alias="imagePullPolicy")
    build_directory: Optional[Path] = Field(default=None, alias="buildDirectory")
    s2i_build_name_suffix: str = Field(default="-s2i", alias="s2iBuildNameSuffix")
    s2i_image_stream_lookup_policy_local: bool = Field(default=True, alias="s2iImageStreamLookupPolicyLocal")
    build_output_kind: str = Field(default="ImageStreamTag", alias="buildOutputKind")
    openshift_pull_secret: Optional[str] = Field(default=None, alias="openshiftPullSecret")
    openshift_push_secret: Optional[str] = Field(default=None, alias="openshiftPushSecret")
    enricher_task: Optional[Callable[[List[Any]], None]] = Field(default=None, exclude=True)


class ResourceConfig(ConfigModel):
    """Resource generation and deployment settings."""

    namespace: Optional[str] = None
    sidecar: bool = False
    switch_on_local_customisation: bool = Field(default=False, alias="localCustomisation")


class JKubeConfiguration(ConfigModel):
    """Runtime view of the project handed to the services."""

    project: JavaProject = Field(default_factory=JavaProject)
    output_directory: Path = Field(default=Path("target"), alias="outputDirectory")
    build_directory: Optional[Path] = Field(default=None, alias="buildDirectory")
    registry_config: RegistryConfig = Field(default_factory=RegistryConfig, alias="registry")
    push_registry_config: RegistryConfig = Field(default_factory=RegistryConfig, alias="pushRegistry")

    @property
    def base_directory(self) -> Path:
        return self.project.base_directory

    @property
    def resolved_output_directory(self) -> Path:
        if self.output_directory.is_absolute():
            return self.output_directory
        return self.base_directory / self.output_directory

    @property
    def resolved_build_directory(self) -> Path:
        if self.build_directory is None:
            return self.resolved_output_directory / "docker"
        if self.build_directory.is_absolute():
            return self.build_directory
        return self.base_directory / self.build_directory

    @property
    def manifest_path(self) -> Path:
        return self.resolved_output_directory / DEFAULT_MANIFEST


class JKubeConfig(ConfigModel):
    """Top-level configuration document describing one invocation."""

    context: ClusterContext = Field(default_factory=ClusterContext)
    project: JavaProject = Field(default_factory=JavaProject)
    images: List[ImageConfiguration] = Field(default_factory=list)
    build_service: BuildServiceConfig = Field(default_factory=BuildServiceConfig, alias="buildService")
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    push_registry: RegistryConfig = Field(default_factory=RegistryConfig, alias="pushRegistry")
    resources: ResourceConfig = Field(default_factory=ResourceConfig)
    summary_enabled: bool = Field(default=True, alias="summaryEnabled")
    output_directory: Path = Field(default=Path("target"), alias="outputDirectory")
    retries: int = 0
    skip_tag: bool = Field(default=False, alias="skipTag")

    @classmethod
    def from_file(cls, path: str | Path) -> "JKubeConfig":
        document_path = Path(path)
        data = yaml.safe_load(document_path.read_text())
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration file must contain a mapping at the top level.")
        return cls.model_validate(data)

    def to_configuration(self) -> JKubeConfiguration:
        return JKubeConfiguration(
            project=self.project,
            output_directory=self.output_directory,
            build_directory=self.build_service.build_directory,
            registry_config=self.registry,
            push_registry_config=self.push_registry,
        )
