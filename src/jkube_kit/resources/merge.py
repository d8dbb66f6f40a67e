"""Reconciliation of user resource fragments with generated default resources.

The fragment always overlays the generated resource. Labels, annotations and
ConfigMap data follow a deletion convention: a fragment entry whose value is
``None`` or ``""`` removes the generated entry. Controllers additionally get
their pod template merged container by container.

Inputs are never mutated and the output only depends on the two inputs, so
merging the same pair twice yields identical documents, and merging the
fragment again onto a merged result is a no-op.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..config import ResourceConfig
from ..exceptions import ConfigurationError
from ..utils import merge_maps_and_remove_empty
from .base import ResourceDefinition

_LOG = logging.getLogger(__name__)

CONTROLLER_KINDS = frozenset(
    {
        "Deployment",
        "DeploymentConfig",
        "StatefulSet",
        "DaemonSet",
        "ReplicaSet",
        "ReplicationController",
        "Job",
    }
)

CONTAINER_SIMPLE_FIELDS = (
    "name",
    "image",
    "imagePullPolicy",
    "workingDir",
    "stdin",
    "stdinOnce",
    "tty",
    "terminationMessagePath",
    "terminationMessagePolicy",
)

_CONTAINER_COPY_IF_ABSENT = ("readinessProbe", "livenessProbe", "securityContext")
_MERGED_MAPS = ("labels", "annotations")


@dataclass(frozen=True)
class MergeOutcome:
    """Merged resource plus the name of the default application container, if any."""

    resource: ResourceDefinition
    application_container: Optional[str] = None


def merge_metadata(generated: Optional[Dict[str, Any]], fragment: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge object metadata; the fragment wins and blank label/annotation values delete."""

    result: Dict[str, Any] = copy.deepcopy(generated or {})
    fragment = fragment or {}
    for key, value in fragment.items():
        if key in _MERGED_MAPS or value is None:
            continue
        result[key] = copy.deepcopy(value)
    for key in _MERGED_MAPS:
        merged = merge_maps_and_remove_empty(fragment.get(key), result.get(key))
        if merged is None:
            result.pop(key, None)
        else:
            result[key] = merged
    return result


def merge_simple_fields(target: Dict[str, Any], defaults: Dict[str, Any], fields: Iterable[str]) -> None:
    """Copy each listed scalar field from ``defaults`` into ``target`` where ``target`` lacks it."""

    for field_name in fields:
        if target.get(field_name) is None and defaults.get(field_name) is not None:
            target[field_name] = copy.deepcopy(defaults[field_name])


def _ensure_has_env(container: Dict[str, Any], env_var: Dict[str, Any]) -> None:
    env = container.setdefault("env", [])
    if any(existing.get("name") == env_var.get("name") for existing in env):
        return
    env.append(copy.deepcopy(env_var))


def _same_port(first: Dict[str, Any], second: Dict[str, Any]) -> bool:
    name1, name2 = first.get("name"), second.get("name")
    if name1 is not None and name2 is not None and name1 == name2:
        return True
    port1, port2 = first.get("containerPort"), second.get("containerPort")
    return port1 is not None and port2 is not None and int(port1) == int(port2)


def _ensure_has_port(container: Dict[str, Any], port: Dict[str, Any]) -> None:
    ports = container.setdefault("ports", [])
    if any(_same_port(existing, port) for existing in ports):
        return
    ports.append(copy.deepcopy(port))


def _merge_container(container: Dict[str, Any], default_container: Dict[str, Any]) -> None:
    merge_simple_fields(container, default_container, CONTAINER_SIMPLE_FIELDS)
    for env_var in default_container.get("env") or []:
        _ensure_has_env(container, env_var)
    for port in default_container.get("ports") or []:
        _ensure_has_port(container, port)
    for field_name in _CONTAINER_COPY_IF_ABSENT:
        if container.get(field_name) is None and default_container.get(field_name) is not None:
            container[field_name] = copy.deepcopy(default_container[field_name])


def merge_pod_spec(
    pod_spec: Dict[str, Any],
    default_pod_spec: Dict[str, Any],
    default_name: Optional[str] = None,
    sidecar_enabled: bool = False,
) -> Optional[str]:
    """Merge the generated containers into ``pod_spec`` in place.

    Containers are aligned by position, or by name when ``sidecar_enabled``
    (a nameless fragment container then stands for the first unmatched
    generated container). Returns the default application container name,
    which callers need to attach image-change triggers.
    """

    application_container: Optional[str] = None
    containers: List[Dict[str, Any]] = pod_spec.setdefault("containers", [])
    default_containers: List[Dict[str, Any]] = default_pod_spec.get("containers") or []

    if default_containers and not containers:
        containers.extend(copy.deepcopy(default_containers))
        return next((c.get("name") for c in containers if c.get("name")), None)

    if not default_containers:
        for container in containers:
            if not container.get("name") and default_name:
                container["name"] = default_name
                break
        return next((c.get("name") for c in containers if c.get("name")), None)

    for idx, default_container in enumerate(default_containers):
        container: Optional[Dict[str, Any]] = None
        if sidecar_enabled:
            for candidate in containers:
                if candidate.get("name") is None or candidate.get("name") == default_container.get("name"):
                    container = candidate
                    if application_container is None:
                        application_container = default_container.get("name")
                    break
        elif idx < len(containers):
            container = containers[idx]

        if container is None:
            containers.append(copy.deepcopy(default_container))
            if application_container is None:
                application_container = default_container.get("name")
            continue

        if application_container is None:
            application_container = container.get("name") or default_container.get("name")
        _merge_container(container, default_container)
    return application_container


def is_local_customisation(pod_spec: Dict[str, Any]) -> bool:
    """A pod spec without any container image only customises the generated one."""

    return not any((container.get("image") or "").strip() for container in pod_spec.get("containers") or [])


def _merge_pod_template(
    generated: Optional[Dict[str, Any]],
    fragment: Optional[Dict[str, Any]],
    switch_on_local_customisation: bool,
    sidecar_enabled: bool,
    default_name: Optional[str],
) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    if fragment is None:
        return copy.deepcopy(generated), None
    generated = generated or {}
    template = copy.deepcopy(generated)
    for key, value in fragment.items():
        if key not in ("metadata", "spec"):
            template[key] = copy.deepcopy(value)
    if "metadata" in generated or "metadata" in fragment:
        template["metadata"] = merge_metadata(generated.get("metadata"), fragment.get("metadata"))

    fragment_pod = fragment.get("spec")
    if fragment_pod is None:
        return template, None
    generated_pod = generated.get("spec") or {}

    if switch_on_local_customisation and not is_local_customisation(fragment_pod):
        _LOG.debug("Fragment pod spec declares images, keeping it as is")
        template["spec"] = copy.deepcopy(fragment_pod)
        return template, None

    pod = copy.deepcopy(generated_pod)
    for key, value in fragment_pod.items():
        pod[key] = copy.deepcopy(value)
    pod["containers"] = copy.deepcopy(fragment_pod.get("containers") or [])
    application_container = merge_pod_spec(pod, generated_pod, default_name, sidecar_enabled)
    if not pod["containers"]:
        del pod["containers"]
    template["spec"] = pod
    return template, application_container


def _merge_controllers(
    generated: ResourceDefinition,
    fragment: ResourceDefinition,
    switch_on_local_customisation: bool,
    sidecar_enabled: bool,
    default_name: Optional[str],
) -> MergeOutcome:
    application_container = None
    if fragment.spec is None:
        spec = copy.deepcopy(generated.spec)
    else:
        spec = copy.deepcopy(generated.spec or {})
        for key, value in fragment.spec.items():
            if key != "template":
                spec[key] = copy.deepcopy(value)
        template, application_container = _merge_pod_template(
            (generated.spec or {}).get("template"),
            fragment.spec.get("template"),
            switch_on_local_customisation,
            sidecar_enabled,
            default_name,
        )
        if template is not None:
            spec["template"] = template

    if application_container is None and spec:
        containers = ((spec.get("template") or {}).get("spec") or {}).get("containers") or []
        application_container = next((c.get("name") for c in containers if c.get("name")), None)

    merged = ResourceDefinition(
        api_version=generated.api_version,
        kind=generated.kind,
        metadata=merge_metadata(generated.metadata, fragment.metadata),
        spec=spec,
        extra=_merge_extra(generated.extra, fragment.extra),
    )
    return MergeOutcome(resource=merged, application_container=application_container)


def _merge_extra(generated: Dict[str, Any], fragment: Dict[str, Any]) -> Dict[str, Any]:
    extra = copy.deepcopy(generated)
    for key, value in fragment.items():
        if key not in extra:
            extra[key] = copy.deepcopy(value)
    return extra


def _merge_config_maps(generated: ResourceDefinition, fragment: ResourceDefinition) -> MergeOutcome:
    extra = _merge_extra(generated.extra, fragment.extra)
    for key in ("data", "binaryData"):
        merged = merge_maps_and_remove_empty(fragment.extra.get(key), generated.extra.get(key))
        if merged is None:
            extra.pop(key, None)
        else:
            extra[key] = merged
    merged_resource = ResourceDefinition(
        api_version=generated.api_version,
        kind=generated.kind,
        metadata=merge_metadata(generated.metadata, fragment.metadata),
        spec=copy.deepcopy(generated.spec),
        extra=extra,
    )
    return MergeOutcome(resource=merged_resource)


def merge(
    generated: ResourceDefinition,
    fragment: ResourceDefinition,
    *,
    switch_on_local_customisation: bool = False,
    sidecar_enabled: bool = False,
    default_name: Optional[str] = None,
    resource_config: Optional[ResourceConfig] = None,
) -> MergeOutcome:
    """Merge ``fragment`` onto ``generated`` according to the resource kind.

    A ``resource_config`` supplies the sidecar and local customisation flags.
    """

    if not isinstance(generated, ResourceDefinition) or not isinstance(fragment, ResourceDefinition):
        raise ConfigurationError("Both merge inputs must be resource definitions")
    if generated.kind != fragment.kind:
        raise ConfigurationError(
            f"Cannot merge {fragment.kind} {fragment.name} into {generated.kind} {generated.name}"
        )
    if resource_config is not None:
        switch_on_local_customisation = resource_config.switch_on_local_customisation
        sidecar_enabled = resource_config.sidecar
    _LOG.info("Merging 2 resources for %s %s", generated.kind, generated.name or fragment.name)

    if generated.kind in CONTROLLER_KINDS:
        return _merge_controllers(generated, fragment, switch_on_local_customisation, sidecar_enabled, default_name)
    if generated.kind == "ConfigMap":
        return _merge_config_maps(generated, fragment)
    merged = ResourceDefinition(
        api_version=generated.api_version,
        kind=generated.kind,
        metadata=merge_metadata(generated.metadata, fragment.metadata),
        spec=copy.deepcopy(generated.spec),
        extra=copy.deepcopy(generated.extra),
    )
    return MergeOutcome(resource=merged)


def merge_resources(generated: ResourceDefinition, fragment: ResourceDefinition, **options: Any) -> ResourceDefinition:
    """Merge and return only the reconciled resource."""

    return merge(generated, fragment, **options).resource


def merge_resource_lists(
    generated: Iterable[ResourceDefinition],
    fragments: Iterable[ResourceDefinition],
    **options: Any,
) -> List[ResourceDefinition]:
    """Overlay every fragment onto the generated list, keeping one resource per (kind, name)."""

    merged: Dict[Tuple[str, Optional[str]], ResourceDefinition] = {}
    for resource in list(generated) + list(fragments):
        existing = merged.get(resource.key)
        merged[resource.key] = resource if existing is None else merge_resources(existing, resource, **options)
    return list(merged.values())
