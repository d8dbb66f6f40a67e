"""Applying resource lists to the cluster."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from kubernetes.client import ApiException

from ..exceptions import ConfigurationError, JKubeServiceError
from ..kube import ClusterClient
from ..resources.base import ResourceDefinition
from ..resources.loader import is_cluster_scoped, load_resources, sort_namespace_first
from ..summary import KubernetesResourceSummary, SummaryRecorder

_LOG = logging.getLogger(__name__)


class ApplyService:
    """Create or update resources in dependency order."""

    def __init__(self, cluster: ClusterClient, summary: SummaryRecorder, summary_enabled: bool = True) -> None:
        self.cluster = cluster
        self.summary = summary
        self.summary_enabled = summary_enabled

    def apply(self, resources: Iterable[ResourceDefinition], namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        """Apply ``resources``; stops at the first failure, which is recorded in the summary."""

        self.summary.set_applied_cluster_url(self.cluster.master_url)
        fallback_namespace = namespace or self.cluster.context.namespace
        applied: List[Dict[str, Any]] = []
        for resource in sort_namespace_first(resources):
            target_namespace = None if is_cluster_scoped(resource) else resource.namespace or fallback_namespace
            _LOG.info("Applying %s", resource.display_name)
            try:
                applied.append(self.cluster.apply(resource, target_namespace))
            except (ApiException, ConfigurationError) as exc:
                message = f"Failed to apply {resource.display_name}: {exc}"
                _LOG.error(message)
                self.summary.set_failure_if_summary_enabled_or_raise(
                    self.summary_enabled, message, lambda: JKubeServiceError(message)
                )
                return applied
            self.summary.add_applied_kubernetes_resource(
                KubernetesResourceSummary.from_resource(resource, target_namespace)
            )
        self.summary.add_to_actions("apply")
        return applied

    def apply_manifest(self, manifest: Path, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        _LOG.info("Using resources from %s", manifest)
        return self.apply(load_resources(manifest), namespace)
