"""Parsing of container image references such as ``quay.io/ns/repo:tag``."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_TAG = "latest"


def is_registry(segment: str) -> bool:
    """A first path segment names a registry when it looks like a host."""

    return "." in segment or ":" in segment or segment == "localhost"


@dataclass(frozen=True)
class ImageName:
    """Components of an image reference.

    ``registry`` is only recognised when the first path segment is
    domain-like and at least one more segment follows it.
    """

    repository: str
    registry: Optional[str] = None
    tag: Optional[str] = None
    digest: Optional[str] = None

    @classmethod
    def parse(cls, full_name: str) -> "ImageName":
        if not full_name or not full_name.strip():
            raise ValueError("Image name must not be empty")
        remainder = full_name.strip()
        digest = None
        if "@" in remainder:
            remainder, digest = remainder.split("@", 1)
        tag = None
        last_slash = remainder.rfind("/")
        last_colon = remainder.rfind(":")
        if last_colon > last_slash:
            remainder, tag = remainder[:last_colon], remainder[last_colon + 1 :]
        parts = remainder.split("/")
        registry = None
        if len(parts) > 1 and is_registry(parts[0]):
            registry = parts[0]
            parts = parts[1:]
        repository = "/".join(parts)
        if not repository:
            raise ValueError(f"Invalid image name '{full_name}'")
        if tag is None and digest is None:
            tag = DEFAULT_TAG
        return cls(repository=repository, registry=registry, tag=tag, digest=digest)

    @property
    def has_registry(self) -> bool:
        return bool(self.registry)

    @property
    def user(self) -> Optional[str]:
        if "/" in self.repository:
            return self.repository.split("/", 1)[0]
        return None

    @property
    def simple_name(self) -> str:
        return self.repository.rsplit("/", 1)[-1]

    def name_without_tag(self, registry: Optional[str] = None) -> str:
        effective = self.registry or registry
        return f"{effective}/{self.repository}" if effective else self.repository

    def full_name(self, registry: Optional[str] = None) -> str:
        """Full reference; ``registry`` is used only if the name has none."""

        name = self.name_without_tag(registry)
        if self.tag:
            name = f"{name}:{self.tag}"
        if self.digest:
            name = f"{name}@{self.digest}"
        return name

    def with_tag(self, tag: str) -> "ImageName":
        return ImageName(repository=self.repository, registry=self.registry, tag=tag, digest=None)
