"""Error taxonomy shared by the merge, build and undeploy services."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .operations.undeploy import UndeployResult
    from .runner import CommandResult


class JKubeError(Exception):
    """Base class for every error raised by jkube_kit."""


class ConfigurationError(JKubeError, ValueError):
    """Invalid or incomplete configuration; never retried."""


class JKubeServiceError(JKubeError):
    """A build or push failed for reasons other than configuration or authentication."""


class TransientRegistryError(JKubeServiceError):
    """Registry or daemon hiccup that a push may retry."""


class AuthenticationError(JKubeError):
    """The registry rejected the credentials, or none were available."""

    def __init__(self, message: str, registry: str | None = None) -> None:
        super().__init__(message)
        self.registry = registry


class CommandError(JKubeError):
    """An external command exited with a non-zero status."""

    def __init__(self, message: str, result: "CommandResult") -> None:
        super().__init__(message)
        self.result = result


class UndeployError(JKubeError):
    """At least one resource could not be deleted during an undeploy pass."""

    def __init__(self, message: str, result: "UndeployResult") -> None:
        super().__init__(message)
        self.result = result
