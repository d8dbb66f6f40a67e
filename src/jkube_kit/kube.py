"""Low-level Kubernetes client helpers used by the apply, build and undeploy services."""
from __future__ import annotations

import copy
import logging
import time
from typing import Any, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client import ApiException
from kubernetes.dynamic import DynamicClient, ResourceInstance

from .config import ClusterContext
from .exceptions import ConfigurationError
from .resources.base import ResourceDefinition
from .resources.crd import CrdContext
from .utils import deep_merge


_LOG = logging.getLogger(__name__)

BACKGROUND = "Background"


def _as_dict(value: Any) -> Dict[str, Any]:
    return value.to_dict() if isinstance(value, ResourceInstance) else value


class ClusterClient:
    """Wrapper around the Kubernetes dynamic client exposing the operations the core relies on."""

    def __init__(self, context: ClusterContext) -> None:
        self.context = context
        api_client = config.new_client_from_config(
            config_file=context.kubeconfig,
            context=context.context,
        )
        api_client.configuration.verify_ssl = context.verify_ssl
        self.api_client = api_client
        self.dynamic = DynamicClient(api_client)
        self.custom_objects = client.CustomObjectsApi(api_client)

    @property
    def master_url(self) -> str:
        return self.api_client.configuration.host

    def apply(self, definition: ResourceDefinition, namespace: Optional[str] = None) -> Dict[str, Any]:
        """Create or update a resource to match the provided definition."""

        body = copy.deepcopy(definition.to_dict())
        target_namespace = namespace or definition.namespace or self.context.namespace
        if target_namespace and self._is_namespaced(definition.api_version, definition.kind):
            body.setdefault("metadata", {})["namespace"] = target_namespace
        elif not target_namespace and self._is_namespaced(definition.api_version, definition.kind):
            raise ConfigurationError(f"Namespace must be provided for {definition.kind} resources.")

        resource = self.dynamic.resources.get(api_version=definition.api_version, kind=definition.kind)

        resource_name = definition.name
        if not resource_name:
            _LOG.debug("Creating %s %s with generated name", definition.kind, body.get("metadata"))
            return _as_dict(resource.create(body=body, namespace=target_namespace))

        try:
            existing = resource.get(name=resource_name, namespace=target_namespace)
        except ApiException as exc:
            if exc.status == 404:
                _LOG.debug("Creating %s/%s", definition.kind, resource_name)
                return _as_dict(resource.create(body=body, namespace=target_namespace))
            if exc.status in (401, 403):
                _LOG.info(
                    "Insufficient permissions to read %s/%s; attempting create-or-patch",
                    definition.kind,
                    resource_name,
                )
                return self._create_or_patch_without_get(resource, definition, body, target_namespace)
            raise

        existing_dict = existing.to_dict()
        resource_version = existing_dict.get("metadata", {}).get("resourceVersion")
        merged_body = deep_merge(self._sanitize_existing(existing_dict), body)
        if resource_version:
            merged_body.setdefault("metadata", {})["resourceVersion"] = resource_version

        _LOG.debug("Updating %s/%s", definition.kind, resource_name)
        return _as_dict(resource.replace(name=resource_name, namespace=target_namespace, body=merged_body))

    def _create_or_patch_without_get(
        self,
        resource: Any,
        definition: ResourceDefinition,
        body: Dict[str, Any],
        namespace: Optional[str],
    ) -> Dict[str, Any]:
        """Fallback used when GET permission is denied."""

        try:
            return _as_dict(resource.create(body=body, namespace=namespace))
        except ApiException as exc:
            if exc.status != 409:
                raise

        patch_body = copy.deepcopy(body)
        metadata = patch_body.get("metadata")
        if metadata:
            metadata.pop("namespace", None)
            metadata.pop("resourceVersion", None)

        _LOG.debug("Patching %s/%s without prior GET", definition.kind, definition.name)
        patched = resource.patch(
            name=definition.name,
            namespace=namespace,
            body=patch_body,
            content_type="application/merge-patch+json",
        )
        return _as_dict(patched)

    def get(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Return the live object, or ``None`` when it does not exist."""

        resource = self.dynamic.resources.get(api_version=api_version, kind=kind)
        try:
            return _as_dict(resource.get(name=name, namespace=namespace))
        except ApiException as exc:
            if exc.status != 404:
                raise
            return None

    def delete(
        self,
        api_version: str,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        propagation_policy: str = BACKGROUND,
    ) -> bool:
        """Delete a resource; returns ``False`` when it was already gone."""

        resource = self.dynamic.resources.get(api_version=api_version, kind=kind)
        try:
            resource.delete(
                name=name,
                namespace=namespace,
                body={"kind": "DeleteOptions", "apiVersion": "v1", "propagationPolicy": propagation_policy},
            )
        except ApiException as exc:
            if exc.status != 404:
                raise
            _LOG.debug("Resource %s/%s not found during delete", kind, name)
            return False
        _LOG.debug("Deleted %s/%s", kind, name)
        return True

    def delete_and_wait(
        self,
        api_version: str,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        retries: int = 10,
        interval: float = 1.0,
    ) -> bool:
        """Delete a resource and poll until it is gone.

        Returns ``True`` once the object is no longer found, ``False`` when it
        is still present after ``retries`` polls.
        """

        self.delete(api_version, kind, name, namespace)
        for _ in range(retries):
            if self.get(api_version, kind, name, namespace) is None:
                return True
            _LOG.debug("Waiting for %s/%s to be deleted", kind, name)
            time.sleep(interval)
        return self.get(api_version, kind, name, namespace) is None

    def list_custom_resource_definitions(self) -> List[Dict[str, Any]]:
        resource = self.dynamic.resources.get(api_version="apiextensions.k8s.io/v1", kind="CustomResourceDefinition")
        return _as_dict(resource.get()).get("items", [])

    def get_custom_resource(self, crd: CrdContext, name: str, namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        try:
            if crd.namespaced:
                return self.custom_objects.get_namespaced_custom_object(
                    crd.group, crd.version, namespace, crd.plural, name
                )
            return self.custom_objects.get_cluster_custom_object(crd.group, crd.version, crd.plural, name)
        except ApiException as exc:
            if exc.status != 404:
                raise
            return None

    def delete_custom_resource(
        self,
        crd: CrdContext,
        name: str,
        namespace: Optional[str] = None,
        propagation_policy: str = BACKGROUND,
    ) -> bool:
        """Delete a custom resource instance; returns ``False`` when it was already gone."""

        try:
            if crd.namespaced:
                self.custom_objects.delete_namespaced_custom_object(
                    crd.group, crd.version, namespace, crd.plural, name, propagation_policy=propagation_policy
                )
            else:
                self.custom_objects.delete_cluster_custom_object(
                    crd.group, crd.version, crd.plural, name, propagation_policy=propagation_policy
                )
        except ApiException as exc:
            if exc.status != 404:
                raise
            _LOG.debug("Custom resource %s/%s not found during delete", crd.kind, name)
            return False
        return True

    @staticmethod
    def _sanitize_existing(body: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = copy.deepcopy(body)
        metadata = sanitized.get("metadata", {})
        for field in [
            "creationTimestamp",
            "managedFields",
            "resourceVersion",
            "selfLink",
            "uid",
            "generation",
        ]:
            metadata.pop(field, None)
        sanitized.pop("status", None)
        return sanitized

    def _is_namespaced(self, api_version: str, kind: str) -> bool:
        """Best effort check to determine if a resource is namespaced."""

        resource = self.dynamic.resources.get(api_version=api_version, kind=kind)
        return bool(resource.namespaced)
