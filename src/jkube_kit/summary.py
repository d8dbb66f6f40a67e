"""Accumulator of build, push, resource, apply and undeploy outcomes for one invocation.

A :class:`SummaryRecorder` is created once per top-level invocation, passed to
the services that contribute to it and printed at the end of the run. When the
output directory exists the summary is also persisted as ``summary.json`` so
that separate phases of the same run report into one document.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .resources.base import ResourceDefinition

_LOG = logging.getLogger(__name__)

SUMMARY_FILE_NAME = "summary.json"
DASHED_LINE = "-------------------------------"
LIST_ELEMENT = " - %s"


class SummaryModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ImageSummary(SummaryModel):
    base_image_name: Optional[str] = Field(default=None, alias="baseImageName")
    dockerfile_path: Optional[str] = Field(default=None, alias="dockerfilePath")
    image_stream_used: Optional[str] = Field(default=None, alias="imageStreamUsed")
    image_sha: Optional[str] = Field(default=None, alias="imageSha")


class KubernetesResourceSummary(SummaryModel):
    resource_name: str = Field(alias="resourceName")
    kind: str
    group: str
    version: str
    namespace: Optional[str] = None

    @classmethod
    def from_resource(cls, resource: ResourceDefinition, namespace: Optional[str] = None) -> "KubernetesResourceSummary":
        group = resource.api_group or resource.version
        return cls(
            resource_name=resource.name or "",
            kind=resource.kind,
            group=group,
            version=resource.version,
            namespace=resource.namespace or namespace,
        )


class Summary(SummaryModel):
    """Everything reported at the end of a run."""

    image_summaries: Dict[str, ImageSummary] = Field(default_factory=dict, alias="imageSummariesMap")
    build_strategy: Optional[str] = Field(default=None, alias="buildStrategy")
    generators_applied: List[str] = Field(default_factory=list, alias="generatorsApplied")
    enrichers_applied: List[str] = Field(default_factory=list, alias="enrichersApplied")
    openshift_build_config_name: Optional[str] = Field(default=None, alias="openShiftBuildConfigName")
    push_registry: Optional[str] = Field(default=None, alias="pushRegistry")
    generated_resource_files: List[str] = Field(default_factory=list, alias="generatedResourceFiles")
    aggregate_resource_file: Optional[str] = Field(default=None, alias="aggregateResourceFile")
    applied_cluster_url: Optional[str] = Field(default=None, alias="appliedClusterUrl")
    applied_kubernetes_resources: List[KubernetesResourceSummary] = Field(
        default_factory=list, alias="appliedKubernetesResources"
    )
    undeployed_cluster_url: Optional[str] = Field(default=None, alias="undeployedClusterUrl")
    deleted_kubernetes_resources: List[KubernetesResourceSummary] = Field(
        default_factory=list, alias="deletedKubernetesResources"
    )
    helm_chart_name: Optional[str] = Field(default=None, alias="helmChartName")
    helm_chart: Optional[str] = Field(default=None, alias="helmChart")
    helm_chart_compressed: Optional[str] = Field(default=None, alias="helmChartCompressed")
    helm_repository: Optional[str] = Field(default=None, alias="helmRepository")
    action_type: Optional[str] = Field(default=None, alias="actionType")
    actions_run: List[str] = Field(default_factory=list, alias="actionsRun")
    successful: bool = True
    failure_cause: Optional[str] = Field(default=None, alias="failureCause")


def _append_unique(items: List, item) -> None:
    if item not in items:
        items.append(item)


def _relative(base_directory: Path, path: str) -> str:
    try:
        return str(Path(path).resolve().relative_to(base_directory.resolve()))
    except ValueError:
        return path


class SummaryRecorder:
    """Explicit init/record/print/clear lifecycle around a :class:`Summary`.

    Not thread-safe; one recorder serves one invocation.
    """

    def __init__(self) -> None:
        self._summary: Optional[Summary] = None
        self._summary_file: Optional[Path] = None
        self._logger: logging.Logger = _LOG

    @property
    def initialized(self) -> bool:
        return self._summary is not None

    @property
    def summary(self) -> Summary:
        return self._require()

    def init_summary(self, output_directory: Path | str, logger: Optional[logging.Logger] = None) -> None:
        if self._summary is not None:
            raise RuntimeError("Summary already initialized; call clear() first")
        self._logger = logger or _LOG
        output_directory = Path(output_directory)
        self._summary_file = output_directory / SUMMARY_FILE_NAME if output_directory.is_dir() else None
        if self._summary_file is not None and self._summary_file.is_file():
            self._summary = Summary.model_validate_json(self._summary_file.read_text())
        else:
            self._summary = Summary()

    def _require(self) -> Summary:
        if self._summary is None:
            raise RuntimeError("Summary not initialized; call init_summary() first")
        return self._summary

    def _update(self, change: Callable[[Summary], None]) -> None:
        summary = self._require()
        change(summary)
        if self._summary_file is not None:
            self._summary_file.write_text(summary.model_dump_json(by_alias=True, indent=2))

    def _update_image(self, image_name: str, **fields: str) -> None:
        def change(summary: Summary) -> None:
            image = summary.image_summaries.setdefault(image_name, ImageSummary())
            for key, value in fields.items():
                setattr(image, key, value)

        self._update(change)

    def add_generated_resource_file(self, resource_file: Path | str) -> None:
        self._update(lambda s: _append_unique(s.generated_resource_files, str(Path(resource_file).absolute())))

    def add_applied_kubernetes_resource(self, resource: KubernetesResourceSummary) -> None:
        self._update(lambda s: _append_unique(s.applied_kubernetes_resources, resource))

    def add_deleted_kubernetes_resource(self, resource: KubernetesResourceSummary) -> None:
        self._update(lambda s: _append_unique(s.deleted_kubernetes_resources, resource))

    def add_to_generators(self, generator: str) -> None:
        self._update(lambda s: _append_unique(s.generators_applied, generator))

    def add_to_enrichers(self, enricher: str) -> None:
        self._update(lambda s: _append_unique(s.enrichers_applied, enricher))

    def add_to_actions(self, action: str) -> None:
        self._update(lambda s: _append_unique(s.actions_run, action))

    def set_action_type(self, action_type: str) -> None:
        self._update(lambda s: setattr(s, "action_type", action_type))

    def set_successful(self, successful: bool) -> None:
        self._update(lambda s: setattr(s, "successful", successful))

    def set_failure_cause(self, cause: str) -> None:
        self._update(lambda s: setattr(s, "failure_cause", cause))

    def set_failure_and_cause(self, cause: str) -> None:
        def change(summary: Summary) -> None:
            summary.successful = False
            summary.failure_cause = cause

        self._update(change)

    def set_failure_if_summary_enabled_or_raise(
        self,
        summary_enabled: bool,
        message: str,
        error_factory: Callable[[], Exception],
    ) -> None:
        """Record the failure when the summary is enabled, otherwise raise the produced error."""

        if not summary_enabled:
            raise error_factory()
        self.set_failure_and_cause(message)

    def set_dockerfile_image_summary(self, image_name: str, dockerfile_path: str) -> None:
        self._update_image(image_name, dockerfile_path=dockerfile_path)

    def set_image_sha_image_summary(self, image_name: str, image_sha: str) -> None:
        self._update_image(image_name, image_sha=image_sha)

    def set_image_stream_used_image_summary(self, image_name: str, image_stream: str) -> None:
        self._update_image(image_name, image_stream_used=image_stream)

    def set_base_image_name_image_summary(self, image_name: str, base_image: str) -> None:
        self._update_image(image_name, base_image_name=base_image)

    def set_push_registry(self, registry: Optional[str]) -> None:
        self._update(lambda s: setattr(s, "push_registry", registry))

    def set_build_strategy(self, strategy: str) -> None:
        self._update(lambda s: setattr(s, "build_strategy", strategy))

    def set_applied_cluster_url(self, url: str) -> None:
        self._update(lambda s: setattr(s, "applied_cluster_url", url))

    def set_undeployed_cluster_url(self, url: str) -> None:
        self._update(lambda s: setattr(s, "undeployed_cluster_url", url))

    def set_openshift_build_config_name(self, name: str) -> None:
        self._update(lambda s: setattr(s, "openshift_build_config_name", name))

    def set_helm_chart_name(self, chart: str) -> None:
        self._update(lambda s: setattr(s, "helm_chart_name", chart))

    def set_helm_chart_location(self, chart: Path | str) -> None:
        self._update(lambda s: setattr(s, "helm_chart", str(Path(chart).absolute())))

    def set_helm_chart_compressed_location(self, chart: Path | str) -> None:
        self._update(lambda s: setattr(s, "helm_chart_compressed", str(Path(chart).absolute())))

    def set_helm_repository(self, repository: str) -> None:
        self._update(lambda s: setattr(s, "helm_repository", repository))

    def set_aggregate_resource_file(self, resource_file: Path | str) -> None:
        self._update(lambda s: setattr(s, "aggregate_resource_file", str(Path(resource_file).absolute())))

    def clear(self) -> None:
        """Forget everything recorded so far; safe to call at any time."""

        if self._summary_file is not None and self._summary_file.exists():
            self._summary_file.unlink()
        self._summary_file = None
        self._summary = None

    def print_summary(self, base_directory: Path | str, summary_enabled: bool) -> None:
        if self._summary is None or not summary_enabled:
            return
        summary = self._summary
        base_directory = Path(base_directory)
        log = self._logger

        log.info(" __ / / //_/ / / / _ )/ __/")
        log.info("/ // / ,< / /_/ / _  / _/  ")
        log.info("\\___/_/|_|\\____/____/___/  \n")
        log.info(DASHED_LINE)
        log.info("      SUMMARY")
        log.info(DASHED_LINE)

        if summary.image_summaries:
            log.info("Container images:")
            for image_name, image in summary.image_summaries.items():
                log.info(LIST_ELEMENT, image_name)
                if image.base_image_name:
                    log.info("    * Base image: %s", image.base_image_name)
                if image.dockerfile_path:
                    log.info("    * Dockerfile image: %s", _relative(base_directory, image.dockerfile_path))
                if image.image_stream_used:
                    log.info("    * ImageStream: %s", image.image_stream_used)
                if image.image_sha:
                    log.info("    * SHA: %s", image.image_sha)
            log.info("")

        if summary.build_strategy:
            log.info("Build Strategy : %s", summary.build_strategy)
        if summary.generators_applied:
            log.info("Generators applied: [%s]", ",".join(summary.generators_applied))
        if summary.openshift_build_config_name:
            log.info("Build config: %s", summary.openshift_build_config_name)
        log.info("")

        if summary.push_registry:
            log.info("Registry: %s", summary.push_registry)

        if summary.generated_resource_files:
            if summary.enrichers_applied and len(summary.enrichers_applied) < 20:
                log.info("Enrichers applied: [%s]", ",".join(summary.enrichers_applied))
            log.info("Generated resources:")
            for resource_file in summary.generated_resource_files:
                log.info(LIST_ELEMENT, _relative(base_directory, resource_file))
        if summary.aggregate_resource_file:
            log.info(LIST_ELEMENT, _relative(base_directory, summary.aggregate_resource_file))
        log.info("")

        if summary.applied_cluster_url:
            log.info("Applied resources from %s", summary.applied_cluster_url)
            self._print_resources(summary.applied_kubernetes_resources)
            log.info("")
        if summary.undeployed_cluster_url:
            log.info("Undeployed resources from %s", summary.undeployed_cluster_url)
            self._print_resources(summary.deleted_kubernetes_resources)
            log.info("")

        if summary.helm_chart_name:
            log.info("Chart : %s", summary.helm_chart_name)
        if summary.helm_chart:
            log.info("Location : %s", _relative(base_directory, summary.helm_chart))
        if summary.helm_chart_compressed:
            log.info("Compressed : %s", _relative(base_directory, summary.helm_chart_compressed))
        if summary.helm_repository:
            log.info("Repository : %s", summary.helm_repository)
        if summary.action_type and summary.actions_run:
            log.info("%s executed : [ %s ]", summary.action_type, ", ".join(summary.actions_run))

        log.info(DASHED_LINE)
        if summary.successful:
            log.info("SUCCESS")
        else:
            log.error("FAILURE [%s]", summary.failure_cause)
        log.info(DASHED_LINE)

    def _print_resources(self, resources: List[KubernetesResourceSummary]) -> None:
        for resource in resources:
            self._logger.info(LIST_ELEMENT, resource.resource_name)
            if resource.group == resource.version:
                self._logger.info("   * %s %s", resource.group, resource.kind)
            else:
                self._logger.info("   * %s/%s %s", resource.group, resource.version, resource.kind)
            self._logger.info("   * Namespace: %s", resource.namespace)
