"""Registry precedence and credential resolution for pulls and pushes."""
from __future__ import annotations

import base64
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Set

from .config import ImageConfiguration, ImagePullPolicy, RegistryConfig, RegistryServerConfiguration
from .exceptions import AuthenticationError, ConfigurationError
from .image_name import ImageName
from .utils import first_registry_of

_LOG = logging.getLogger(__name__)

DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io", "registry.hub.docker.com")
DOCKER_HUB_AUTH_KEY = "https://index.docker.io/v1/"
ENV_PREFIX = "JKUBE_DOCKER_"


def get_applicable_registry(
    is_push: bool,
    image: ImageConfiguration,
    registry_config: RegistryConfig,
) -> Optional[str]:
    """Resolve the registry for ``image``.

    Precedence: the registry embedded in the relevant image name (the target
    name when pushing, the base image when pulling), then the registry set on
    the image configuration, then the registry configuration.
    """

    if is_push:
        image_name: Optional[str] = image.name
    else:
        image_name = image.build.base_image if image.build else None
    embedded = ImageName.parse(image_name).registry if image_name else None
    return first_registry_of(embedded, image.registry, registry_config.registry)


def get_applicable_push_registry_from(image: ImageConfiguration, registry_config: RegistryConfig) -> Optional[str]:
    return get_applicable_registry(True, image, registry_config)


def get_applicable_pull_registry_from(image_name: Optional[str], registry_config: RegistryConfig) -> Optional[str]:
    """Registry for pulling ``image_name``: its own registry, else the configured one."""

    if not image_name:
        return registry_config.registry
    return first_registry_of(ImageName.parse(image_name).registry, registry_config.registry)


def get_server(
    settings: Iterable[RegistryServerConfiguration],
    server_id: Optional[str],
) -> Optional[RegistryServerConfiguration]:
    """Case-insensitive lookup of a server entry; ``None`` when absent."""

    if not server_id:
        return None
    wanted = server_id.lower()
    for server in settings or []:
        if server.id and server.id.lower() == wanted:
            return server
    return None


@dataclass(frozen=True)
class AuthConfig:
    """Credentials for one registry."""

    username: str
    password: str
    email: Optional[str] = None
    auth: Optional[str] = None


def _from_environment(is_push: bool, registry: Optional[str], environ: Mapping[str, str]) -> Optional[AuthConfig]:
    direction = f"{ENV_PREFIX}{'PUSH' if is_push else 'PULL'}_"
    for prefix in (direction, ENV_PREFIX):
        username = environ.get(f"{prefix}USERNAME")
        if not username:
            continue
        password = environ.get(f"{prefix}PASSWORD")
        if not password:
            raise AuthenticationError(f"No {prefix}PASSWORD provided for username {username}", registry)
        _LOG.debug("Using credentials from %sUSERNAME", prefix)
        return AuthConfig(
            username=username,
            password=password,
            email=environ.get(f"{prefix}EMAIL"),
            auth=environ.get(f"{prefix}AUTH_TOKEN"),
        )
    return None


def _from_auth_config_map(is_push: bool, registry_config: RegistryConfig) -> Optional[AuthConfig]:
    auth_map = registry_config.auth_config
    if not auth_map:
        return None
    candidates = (auth_map.get("push" if is_push else "pull"), auth_map)
    for candidate in candidates:
        if not isinstance(candidate, Mapping) or not candidate.get("username"):
            continue
        password = candidate.get("password")
        if not password:
            raise ConfigurationError(f"No 'password' given while using <authConfig> for user {candidate['username']}")
        return AuthConfig(
            username=candidate["username"],
            password=registry_config.password_decryption(password),
            email=candidate.get("email"),
            auth=candidate.get("auth"),
        )
    return None


def _from_settings(
    registry_config: RegistryConfig,
    user: Optional[str],
    registry: Optional[str],
) -> Optional[AuthConfig]:
    server = None
    if registry:
        if user:
            server = get_server(registry_config.settings, f"{registry}/{user}")
        if server is None:
            server = get_server(registry_config.settings, registry)
    else:
        for alias in DOCKER_HUB_ALIASES:
            server = get_server(registry_config.settings, alias)
            if server is not None:
                break
    if server is None or not server.username:
        return None
    _LOG.debug("Using credentials of server %s", server.id)
    return AuthConfig(
        username=server.username,
        password=registry_config.password_decryption(server.password or ""),
        email=server.configuration.get("email"),
        auth=server.configuration.get("auth"),
    )


def _docker_config_keys(registry: Optional[str]) -> Set[str]:
    if not registry or registry in DOCKER_HUB_ALIASES:
        return {DOCKER_HUB_AUTH_KEY, *DOCKER_HUB_ALIASES}
    return {registry, f"https://{registry}", f"http://{registry}", f"https://{registry}/v1/"}


def _from_docker_config(registry: Optional[str], docker_config: Path) -> Optional[AuthConfig]:
    if not docker_config.is_file():
        return None
    auths: Dict[str, Any] = json.loads(docker_config.read_text()).get("auths") or {}
    keys = _docker_config_keys(registry)
    for key, entry in auths.items():
        if key.rstrip("/") not in {candidate.rstrip("/") for candidate in keys}:
            continue
        if entry.get("username") and entry.get("password"):
            return AuthConfig(username=entry["username"], password=entry["password"], email=entry.get("email"))
        encoded = entry.get("auth")
        if encoded:
            username, _, password = base64.b64decode(encoded).decode("utf-8").partition(":")
            return AuthConfig(username=username, password=password, email=entry.get("email"))
    return None


def default_docker_config(environ: Optional[Mapping[str, str]] = None) -> Path:
    environ = os.environ if environ is None else environ
    directory = environ.get("DOCKER_CONFIG")
    return Path(directory) / "config.json" if directory else Path.home() / ".docker" / "config.json"


def create_auth_config(
    is_push: bool,
    registry_config: RegistryConfig,
    user: Optional[str] = None,
    registry: Optional[str] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    docker_config: Optional[Path] = None,
) -> Optional[AuthConfig]:
    """Look up credentials for ``registry``; ``None`` means anonymous access.

    Sources in order: environment variables, the ``authConfig`` map, the
    server settings (decrypting passwords) and the docker client config.
    """

    environ = os.environ if environ is None else environ
    auth = _from_environment(is_push, registry, environ)
    if auth is not None:
        return auth
    auth = _from_auth_config_map(is_push, registry_config)
    if auth is not None:
        return auth
    auth = _from_settings(registry_config, user, registry)
    if auth is not None:
        return auth
    return _from_docker_config(registry, docker_config or default_docker_config(environ))


def get_registry_credentials(
    registry_config: RegistryConfig,
    is_push: bool,
    image: ImageConfiguration,
    logger: Optional[logging.Logger] = None,
    **options: Any,
) -> Optional[AuthConfig]:
    """Credentials for pushing ``image`` or pulling its base image."""

    log = logger or _LOG
    registry = get_applicable_registry(is_push, image, registry_config)
    user = image.image_name.user if is_push else None
    auth = create_auth_config(is_push, registry_config, user, registry, **options)
    if auth is None:
        log.debug("No credentials found for %s, using anonymous access", registry or "default registry")
    return auth


class ImagePullManager:
    """Decides whether a base image must be pulled, remembering pulls made in this run."""

    def __init__(self, policy: ImagePullPolicy = ImagePullPolicy.IF_NOT_PRESENT) -> None:
        self.policy = ImagePullPolicy(policy)
        self._pulled: Set[str] = set()

    def has_already_pulled(self, image: str) -> bool:
        return image in self._pulled

    def pulled(self, image: str) -> None:
        self._pulled.add(image)

    def requires_pull(self, image: str, present_locally: bool) -> bool:
        if self.policy == ImagePullPolicy.NEVER:
            return False
        if self.policy == ImagePullPolicy.ALWAYS:
            return not self.has_already_pulled(image)
        return not present_locally
