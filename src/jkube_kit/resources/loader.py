"""Reading, ordering and writing of manifest files."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import yaml
from ruamel.yaml import YAML

from ..exceptions import ConfigurationError
from .base import ResourceDefinition

_LOG = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yml", ".yaml", ".json")

# (api group, kind) -> namespaced
BUILTIN_KINDS: Dict[Tuple[str, str], bool] = {
    ("", "Namespace"): False,
    ("", "Node"): False,
    ("", "PersistentVolume"): False,
    ("", "ConfigMap"): True,
    ("", "Secret"): True,
    ("", "Service"): True,
    ("", "ServiceAccount"): True,
    ("", "Pod"): True,
    ("", "PersistentVolumeClaim"): True,
    ("", "ReplicationController"): True,
    ("", "Endpoints"): True,
    ("", "LimitRange"): True,
    ("", "ResourceQuota"): True,
    ("apps", "Deployment"): True,
    ("apps", "StatefulSet"): True,
    ("apps", "DaemonSet"): True,
    ("apps", "ReplicaSet"): True,
    ("extensions", "Deployment"): True,
    ("extensions", "Ingress"): True,
    ("batch", "Job"): True,
    ("batch", "CronJob"): True,
    ("networking.k8s.io", "Ingress"): True,
    ("networking.k8s.io", "NetworkPolicy"): True,
    ("networking.k8s.io", "IngressClass"): False,
    ("rbac.authorization.k8s.io", "Role"): True,
    ("rbac.authorization.k8s.io", "RoleBinding"): True,
    ("rbac.authorization.k8s.io", "ClusterRole"): False,
    ("rbac.authorization.k8s.io", "ClusterRoleBinding"): False,
    ("policy", "PodDisruptionBudget"): True,
    ("autoscaling", "HorizontalPodAutoscaler"): True,
    ("storage.k8s.io", "StorageClass"): False,
    ("scheduling.k8s.io", "PriorityClass"): False,
    ("apiextensions.k8s.io", "CustomResourceDefinition"): False,
    ("apps.openshift.io", "DeploymentConfig"): True,
    ("build.openshift.io", "BuildConfig"): True,
    ("image.openshift.io", "ImageStream"): True,
    ("image.openshift.io", "ImageStreamTag"): True,
    ("route.openshift.io", "Route"): True,
    ("template.openshift.io", "Template"): True,
    ("project.openshift.io", "Project"): False,
    ("project.openshift.io", "ProjectRequest"): False,
}

_KIND_ORDER = (
    "Namespace",
    "Project",
    "ProjectRequest",
    "CustomResourceDefinition",
    "ServiceAccount",
    "ClusterRole",
    "ClusterRoleBinding",
    "Role",
    "RoleBinding",
    "ConfigMap",
    "Secret",
    "PersistentVolume",
    "PersistentVolumeClaim",
    "Service",
    "ImageStream",
    "ImageStreamTag",
    "BuildConfig",
)
_CONTROLLER_KINDS = (
    "Deployment",
    "DeploymentConfig",
    "StatefulSet",
    "DaemonSet",
    "ReplicaSet",
    "ReplicationController",
    "Job",
    "CronJob",
)


def is_custom_resource(resource: ResourceDefinition) -> bool:
    """True when the kind is not part of the built-in model."""

    return (resource.api_group, resource.kind) not in BUILTIN_KINDS


def is_cluster_scoped(resource: ResourceDefinition) -> bool:
    return BUILTIN_KINDS.get((resource.api_group, resource.kind)) is False


def _kind_rank(resource: ResourceDefinition) -> int:
    if resource.kind in _KIND_ORDER:
        return _KIND_ORDER.index(resource.kind)
    if resource.kind in _CONTROLLER_KINDS:
        return len(_KIND_ORDER) + 1
    return len(_KIND_ORDER)


def sort_namespace_first(resources: Iterable[ResourceDefinition]) -> List[ResourceDefinition]:
    """Order resources so that dependencies (Namespace, RBAC, config) come first."""

    return sorted(resources, key=_kind_rank)


def _flatten(document: Any, source: Path) -> List[Dict[str, Any]]:
    if document is None:
        return []
    if not isinstance(document, dict):
        raise ConfigurationError(f"Manifest {source} must contain mappings, got {type(document).__name__}")
    kind = document.get("kind", "")
    if kind == "List" or (kind.endswith("List") and isinstance(document.get("items"), list)):
        items: List[Dict[str, Any]] = []
        for item in document.get("items") or []:
            items.extend(_flatten(item, source))
        return items
    return [document]


def load_resources(path: str | Path) -> List[ResourceDefinition]:
    """Load every resource from a YAML (multi-document) or JSON manifest."""

    manifest = Path(path)
    text = manifest.read_text()
    if manifest.suffix == ".json":
        documents = [json.loads(text)]
    else:
        documents = list(yaml.safe_load_all(text))

    resources: Dict[Tuple[str, str, str, str], ResourceDefinition] = {}
    for document in documents:
        for body in _flatten(document, manifest):
            resource = ResourceDefinition.from_dict(body)
            identity = (resource.api_version, resource.kind, resource.namespace or "", resource.name or "")
            resources.pop(identity, None)
            resources[identity] = resource
    _LOG.debug("Loaded %d resources from %s", len(resources), manifest)
    return list(resources.values())


def find_manifests(directories: Sequence[Path], files: Sequence[Path]) -> List[Path]:
    """Existing manifest files: the given files plus manifests directly inside each directory."""

    manifests: List[Path] = []
    for candidate in files:
        if candidate is not None and Path(candidate).is_file():
            manifests.append(Path(candidate))
    for directory in directories:
        directory = Path(directory)
        if not directory.is_dir():
            continue
        for candidate in sorted(directory.iterdir()):
            if candidate.is_file() and candidate.suffix in MANIFEST_SUFFIXES and candidate not in manifests:
                manifests.append(candidate)
    return manifests


def yaml_writer() -> YAML:
    writer = YAML()
    writer.default_flow_style = False
    writer.explicit_start = False
    writer.width = 120
    writer.indent(mapping=2, sequence=4, offset=2)
    return writer


def write_resources(path: str | Path, resources: Iterable[ResourceDefinition]) -> Path:
    """Write ``resources`` as a single ``List`` document."""

    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    document = {
        "apiVersion": "v1",
        "kind": "List",
        "items": [resource.to_dict() for resource in resources],
    }
    with destination.open("w") as stream:
        yaml_writer().dump(document, stream)
    return destination
