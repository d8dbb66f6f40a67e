"""Removal of previously applied resources from the cluster."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from kubernetes.client import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from ..config import JKubeConfig, ResourceConfig
from ..exceptions import JKubeError, UndeployError
from ..kube import ClusterClient
from ..resources.base import ResourceDefinition
from ..resources.crd import build_crd_lookup, find_crd_context, fully_qualified_name
from ..resources.loader import (
    find_manifests,
    is_cluster_scoped,
    is_custom_resource,
    load_resources,
    sort_namespace_first,
)
from ..summary import KubernetesResourceSummary, SummaryRecorder

_LOG = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"


@dataclass
class UndeployResult:
    """Outcome of one undeploy pass."""

    deleted: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    unmatched: List[str] = field(default_factory=list)

    @property
    def successful(self) -> bool:
        return not self.failed


def _describe(resource: ResourceDefinition, namespace: Optional[str]) -> str:
    return f"{resource.kind} {namespace}/{resource.name}" if namespace else resource.display_name


class UndeployService:
    """Deletes the resources of one or more manifests.

    Namespaced resources go first, then custom resources, then cluster-scoped
    ones. Missing resources are skipped, so running twice is harmless. Every
    resource is attempted; failures are collected and reported at the end.
    """

    def __init__(self, cluster: ClusterClient, summary: SummaryRecorder) -> None:
        self.cluster = cluster
        self.summary = summary

    def undeploy(
        self,
        manifest_dirs: Sequence[Path],
        resource_config: Optional[ResourceConfig],
        *manifest_files: Path,
        namespace: Optional[str] = None,
    ) -> UndeployResult:
        try:
            return self._undeploy(manifest_dirs, resource_config, manifest_files, namespace)
        except UndeployError:
            raise
        except (JKubeError, ApiException, ResourceNotFoundError, OSError) as exc:
            _LOG.error("Undeploy aborted: %s", exc)
            self.summary.set_failure_and_cause(f"Undeploy aborted: {exc}")
            raise

    def _undeploy(
        self,
        manifest_dirs: Sequence[Path],
        resource_config: Optional[ResourceConfig],
        manifest_files: Sequence[Path],
        namespace: Optional[str],
    ) -> UndeployResult:
        result = UndeployResult()
        manifests = find_manifests(manifest_dirs, manifest_files)
        if not manifests:
            _LOG.warning("No such generated manifests found for this project, ignoring.")
            return result

        resources: List[ResourceDefinition] = []
        for manifest in manifests:
            _LOG.info("Using resources from %s", manifest)
            resources.extend(load_resources(manifest))
        fallback_namespace = self.resolve_namespace(resources, resource_config, namespace)
        self.summary.set_undeployed_cluster_url(self.cluster.master_url)

        custom = [resource for resource in resources if is_custom_resource(resource)]
        standard = list(reversed(sort_namespace_first(r for r in resources if not is_custom_resource(r))))
        for resource in standard:
            if not is_cluster_scoped(resource):
                self._delete_standard(resource, resource.namespace or fallback_namespace, result)
        if custom:
            self._delete_custom_resources(custom, fallback_namespace, result)
        for resource in standard:
            if is_cluster_scoped(resource):
                self._delete_standard(resource, None, result)
        self.summary.add_to_actions("undeploy")

        if result.failed:
            message = f"Failed to undeploy {len(result.failed)} resource(s): {', '.join(result.failed)}"
            self.summary.set_failure_and_cause(message)
            raise UndeployError(message, result)
        return result

    def resolve_namespace(
        self,
        resources: Sequence[ResourceDefinition],
        resource_config: Optional[ResourceConfig],
        namespace: Optional[str],
    ) -> str:
        """Namespace for resources that do not declare one."""

        if namespace:
            return namespace
        if resource_config is not None and resource_config.namespace:
            return resource_config.namespace
        for resource in resources:
            if resource.kind in ("Namespace", "Project") and resource.name:
                return resource.name
        return self.cluster.context.namespace or DEFAULT_NAMESPACE

    def _record_deleted(self, resource: ResourceDefinition, namespace: Optional[str], result: UndeployResult) -> None:
        result.deleted.append(_describe(resource, namespace))
        self.summary.add_deleted_kubernetes_resource(KubernetesResourceSummary.from_resource(resource, namespace))

    def _delete_standard(self, resource: ResourceDefinition, namespace: Optional[str], result: UndeployResult) -> None:
        description = _describe(resource, namespace)
        if not resource.name:
            _LOG.warning("Skipping %s without a name", resource.kind)
            return
        try:
            if self.cluster.get(resource.api_version, resource.kind, resource.name, namespace) is None:
                _LOG.debug("%s is already absent", description)
                return
            _LOG.info("Deleting resource %s", description)
            if self.cluster.delete(resource.api_version, resource.kind, resource.name, namespace):
                self._record_deleted(resource, namespace, result)
        except ResourceNotFoundError:
            _LOG.warning("The cluster does not serve %s, skipping %s", resource.api_version, description)
            result.unmatched.append(description)
        except ApiException as exc:
            _LOG.error("Error deleting %s: %s", description, exc.reason or exc)
            result.failed[description] = str(exc.reason or exc)

    def _delete_custom_resources(
        self,
        resources: List[ResourceDefinition],
        fallback_namespace: str,
        result: UndeployResult,
    ) -> None:
        try:
            lookup = build_crd_lookup(self.cluster.list_custom_resource_definitions())
        except ResourceNotFoundError:
            _LOG.warning("The cluster does not serve CustomResourceDefinitions, custom resources were not deleted")
            result.unmatched.extend(_describe(resource, resource.namespace) for resource in resources)
            return
        except ApiException as exc:
            _LOG.error("Unable to list CustomResourceDefinitions: %s", exc.reason or exc)
            for resource in resources:
                result.failed[_describe(resource, resource.namespace)] = str(exc.reason or exc)
            return

        for resource in resources:
            crd = find_crd_context(lookup, resource)
            if crd is None:
                description = _describe(resource, resource.namespace)
                _LOG.warning(
                    "Could not find a CustomResourceDefinition for %s (%s), it was not deleted",
                    description,
                    fully_qualified_name(resource),
                )
                result.unmatched.append(description)
                continue
            namespace = (resource.namespace or fallback_namespace) if crd.namespaced else None
            description = _describe(resource, namespace)
            try:
                if self.cluster.get_custom_resource(crd, resource.name, namespace) is None:
                    _LOG.debug("%s is already absent", description)
                    continue
                _LOG.info("Deleting Custom Resource %s", description)
                if self.cluster.delete_custom_resource(crd, resource.name, namespace):
                    self._record_deleted(resource, namespace, result)
            except ApiException as exc:
                _LOG.error("Unable to delete %s: %s", description, exc.reason or exc)
                result.failed[description] = str(exc.reason or exc)


def undeploy_project(
    config: JKubeConfig,
    cluster: ClusterClient,
    summary: SummaryRecorder,
    *manifest_files: Path,
    namespace: Optional[str] = None,
) -> UndeployResult:
    """Undeploy the manifests generated for the project described by ``config``."""

    manifest_dir = config.to_configuration().manifest_path.parent
    service = UndeployService(cluster, summary)
    return service.undeploy([manifest_dir], config.resources, *manifest_files, namespace=namespace)
