"""Addressing custom resources through the CustomResourceDefinitions of a cluster."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from .base import ResourceDefinition


@dataclass(frozen=True)
class CrdContext:
    """Group, version, scope and plural needed to address a custom resource."""

    group: str
    version: str
    scope: str
    plural: str
    kind: str

    @property
    def namespaced(self) -> bool:
        return self.scope == "Namespaced"

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


def lookup_key(api_version: str, kind: str) -> str:
    return f"{api_version}#{kind}"


def fully_qualified_name(resource: ResourceDefinition) -> str:
    return lookup_key(resource.api_version, resource.kind)


def build_crd_lookup(crds: Iterable[Dict[str, Any]]) -> Dict[str, CrdContext]:
    """Index every served version of every CRD by ``group/version#Kind``."""

    lookup: Dict[str, CrdContext] = {}
    for crd in crds:
        spec = crd.get("spec") or {}
        group = spec.get("group")
        names = spec.get("names") or {}
        kind = names.get("kind")
        if not group or not kind:
            continue
        for version in spec.get("versions") or []:
            if not version.get("served", True):
                continue
            context = CrdContext(
                group=group,
                version=version["name"],
                scope=spec.get("scope", "Namespaced"),
                plural=names.get("plural") or f"{kind.lower()}s",
                kind=kind,
            )
            lookup[lookup_key(context.api_version, kind)] = context
    return lookup


def find_crd_context(lookup: Dict[str, CrdContext], resource: ResourceDefinition) -> Optional[CrdContext]:
    return lookup.get(fully_qualified_name(resource))
