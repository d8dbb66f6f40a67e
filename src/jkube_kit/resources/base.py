"""Generic Kubernetes resource document."""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from ..exceptions import ConfigurationError

_RESERVED_KEYS = ("apiVersion", "kind", "metadata", "spec")

# apiVersion assumed for a hand-written document that omits it
DEFAULT_API_VERSIONS: Dict[str, str] = {
    "Deployment": "apps/v1",
    "StatefulSet": "apps/v1",
    "DaemonSet": "apps/v1",
    "ReplicaSet": "apps/v1",
    "Job": "batch/v1",
    "CronJob": "batch/v1",
    "Ingress": "networking.k8s.io/v1",
    "NetworkPolicy": "networking.k8s.io/v1",
    "Role": "rbac.authorization.k8s.io/v1",
    "RoleBinding": "rbac.authorization.k8s.io/v1",
    "ClusterRole": "rbac.authorization.k8s.io/v1",
    "ClusterRoleBinding": "rbac.authorization.k8s.io/v1",
    "PodDisruptionBudget": "policy/v1",
    "HorizontalPodAutoscaler": "autoscaling/v2",
    "DeploymentConfig": "apps.openshift.io/v1",
    "BuildConfig": "build.openshift.io/v1",
    "ImageStream": "image.openshift.io/v1",
    "Route": "route.openshift.io/v1",
}


def default_api_version(kind: str) -> str:
    return DEFAULT_API_VERSIONS.get(kind, "v1")


@dataclass(frozen=True)
class ResourceDefinition:
    """Represents a Kubernetes resource manifest."""

    api_version: str
    kind: str
    metadata: Dict[str, Any]
    spec: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, body: Mapping[str, Any]) -> "ResourceDefinition":
        if not isinstance(body, Mapping):
            raise ConfigurationError(f"Resource must be a mapping, got {type(body).__name__}")
        kind = body.get("kind")
        if not kind:
            raise ConfigurationError("Resource is missing 'kind'")
        metadata = body.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise ConfigurationError(f"Metadata of {kind} must be a mapping")
        spec = body.get("spec")
        return cls(
            api_version=body.get("apiVersion") or default_api_version(kind),
            kind=kind,
            metadata=copy.deepcopy(dict(metadata)),
            spec=copy.deepcopy(dict(spec)) if isinstance(spec, Mapping) else None,
            extra={key: copy.deepcopy(value) for key, value in body.items() if key not in _RESERVED_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata,
        }
        if self.spec is not None:
            body["spec"] = self.spec
        if self.extra:
            body.update(self.extra)
        return body

    @property
    def name(self) -> Optional[str]:
        return self.metadata.get("name")

    @property
    def namespace(self) -> Optional[str]:
        return self.metadata.get("namespace")

    @property
    def labels(self) -> Dict[str, str]:
        return self.metadata.get("labels") or {}

    @property
    def annotations(self) -> Dict[str, str]:
        return self.metadata.get("annotations") or {}

    @property
    def api_group(self) -> str:
        """API group, empty for the core group."""

        return self.api_version.split("/", 1)[0] if "/" in self.api_version else ""

    @property
    def version(self) -> str:
        return self.api_version.rsplit("/", 1)[-1]

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        """Identity used to de-duplicate resources within a manifest."""

        return self.kind, self.name

    @property
    def display_name(self) -> str:
        return f"{self.kind} {self.name}" if self.name else self.kind
