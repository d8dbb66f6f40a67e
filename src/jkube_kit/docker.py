"""Docker daemon access through the ``docker`` CLI, and image pushes with retries."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, Mapping, Optional, Sequence

from .config import ImageConfiguration, RegistryConfig
from .exceptions import AuthenticationError, TransientRegistryError
from .image_name import ImageName
from .registry import AuthConfig, get_applicable_push_registry_from, get_registry_credentials
from .runner import CommandResult, CommandRunner
from .utils import format_duration_since

if TYPE_CHECKING:
    from .summary import SummaryRecorder

_LOG = logging.getLogger(__name__)

AUTH_FAILURE_MARKERS = (
    "unauthorized",
    "authentication required",
    "denied",
    "no basic auth credentials",
)


def is_auth_failure(result: CommandResult) -> bool:
    output = result.output.lower()
    return any(marker in output for marker in AUTH_FAILURE_MARKERS)


class DockerAccess:
    """Image operations against the local Docker daemon."""

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def _raise_for(self, result: CommandResult, action: str, name: str, registry: Optional[str]) -> None:
        if result.success:
            return
        message = f"Unable to {action} {name}: {result.output.strip()}"
        if is_auth_failure(result):
            raise AuthenticationError(message, registry)
        raise TransientRegistryError(message)

    def has_image(self, name: str) -> bool:
        result = self._runner.run(["docker", "images", "-q", name])
        return bool(result.stdout.strip())

    def image_id(self, name: str) -> Optional[str]:
        result = self._runner.run(["docker", "image", "inspect", "--format", "{{.Id}}", name])
        if not result.success:
            return None
        return result.stdout.strip() or None

    def login(self, auth: AuthConfig, registry: Optional[str]) -> None:
        cmd = ["docker", "login"]
        if registry:
            cmd.append(registry)
        cmd.extend(["--username", auth.username, "--password-stdin"])
        result = self._runner.run(cmd, input_text=auth.password)
        if not result.success:
            raise AuthenticationError(f"Login to {registry or 'docker.io'} failed: {result.output.strip()}", registry)

    def pull_image(self, name: str, auth: Optional[AuthConfig] = None, registry: Optional[str] = None) -> None:
        full_name = ImageName.parse(name).full_name(registry)
        if auth is not None:
            self.login(auth, registry)
        _LOG.info("Pulling base image %s", full_name)
        self._raise_for(self._runner.run(["docker", "pull", full_name]), "pull", full_name, registry)

    def build_image(
        self,
        name: str,
        context_dir: Path,
        dockerfile: Path,
        *,
        build_args: Optional[Mapping[str, str]] = None,
        platforms: Sequence[str] = (),
        tags: Iterable[str] = (),
        no_cache: bool = False,
    ) -> None:
        cmd = ["docker", "build", "--tag", name, "--file", str(dockerfile)]
        for tag in tags:
            cmd.extend(["--tag", tag])
        if platforms:
            cmd.extend(["--platform", ",".join(platforms)])
        for key, value in (build_args or {}).items():
            cmd.extend(["--build-arg", f"{key}={value}"])
        if no_cache:
            cmd.append("--no-cache")
        cmd.append(str(context_dir))
        self._runner.run_streaming(cmd, on_output=_LOG.info, check=True)

    def tag(self, source: str, target: str) -> None:
        self._runner.run(["docker", "tag", source, target], check=True)

    def push_image(self, name: str, auth: Optional[AuthConfig], registry: Optional[str], retries: int) -> None:
        """Push ``name`` to ``registry``, retrying transient failures up to ``retries`` times.

        Authentication failures are raised immediately.
        """

        target = ImageName.parse(name).full_name(registry)
        if target != name:
            self.tag(name, target)
        if auth is not None:
            self.login(auth, registry)
        attempt = 0
        while True:
            result = self._runner.run(["docker", "push", target])
            try:
                self._raise_for(result, "push", target, registry)
                return
            except TransientRegistryError:
                if attempt >= retries:
                    raise
                attempt += 1
                _LOG.warning("Push of %s failed, retrying (%d/%d)", target, attempt, retries)


class RegistryService:
    """Pushes images to the registry resolved for each image."""

    def __init__(
        self,
        docker_access: DockerAccess,
        summary: Optional["SummaryRecorder"] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> None:
        self._docker = docker_access
        self._summary = summary
        self._environ = environ

    def push_image(self, image: ImageConfiguration, retries: int, registry_config: RegistryConfig, skip_tag: bool) -> None:
        registry = get_applicable_push_registry_from(image, registry_config)
        auth = get_registry_credentials(registry_config, True, image, environ=self._environ)
        image_name = image.image_name
        start = time.monotonic()
        self._docker.push_image(image.name, auth, registry, retries)
        _LOG.info("Pushed %s in %s", image_name.full_name(registry), format_duration_since(start))
        if not skip_tag and image.build is not None:
            for tag in image.build.tags:
                self._docker.push_image(image_name.with_tag(tag).full_name(), auth, registry, retries)
        if self._summary is not None:
            self._summary.set_push_registry(registry)
