"""Build-then-push orchestration over the selected build strategy."""
from __future__ import annotations

import logging
import time
from typing import Any, Iterable, List, Optional

from ..config import ImageConfiguration, JKubeConfig, RegistryConfig
from ..exceptions import JKubeError
from ..kube import ClusterClient
from ..strategies.base import BuildServiceHub, BuildStrategy
from ..strategies.selector import select_strategy
from ..summary import SummaryRecorder
from ..utils import format_duration_since

_LOG = logging.getLogger(__name__)


class BuildOperations:
    """Runs the build strategy resolved for this invocation and feeds the summary."""

    def __init__(self, hub: BuildServiceHub, summary_enabled: bool = True) -> None:
        self.hub = hub
        self.summary_enabled = summary_enabled
        self._strategy: Optional[BuildStrategy] = None

    @classmethod
    def from_config(
        cls,
        config: JKubeConfig,
        summary: SummaryRecorder,
        cluster: Optional[ClusterClient] = None,
        **hub_options: Any,
    ) -> "BuildOperations":
        hub = BuildServiceHub(
            configuration=config.to_configuration(),
            build_service_config=config.build_service,
            summary=summary,
            cluster=cluster,
            **hub_options,
        )
        return cls(hub, summary_enabled=config.summary_enabled)

    @property
    def strategy(self) -> BuildStrategy:
        if self._strategy is None:
            self._strategy = select_strategy(self.hub)
        return self._strategy

    def build(self, images: Iterable[ImageConfiguration]) -> None:
        strategy = self.strategy
        for image in images:
            start = time.monotonic()
            strategy.build(image)
            if not image.is_build_skipped:
                _LOG.info("%s: Built image in %s", image.description, format_duration_since(start))
        strategy.post_process()
        self.hub.summary.add_to_actions("build")

    def push(
        self,
        images: Iterable[ImageConfiguration],
        retries: int = 0,
        registry_config: Optional[RegistryConfig] = None,
        skip_tag: bool = False,
    ) -> None:
        registry_config = registry_config or self.hub.configuration.push_registry_config
        self.strategy.push(images, retries, registry_config, skip_tag)
        self.hub.summary.add_to_actions("push")

    def build_and_push(
        self,
        images: Iterable[ImageConfiguration],
        retries: int = 0,
        registry_config: Optional[RegistryConfig] = None,
        skip_tag: bool = False,
    ) -> bool:
        """Build every image then push them; returns ``False`` when a failure was recorded.

        With the summary disabled, the failure propagates instead.
        """

        images: List[ImageConfiguration] = list(images)
        try:
            self.build(images)
            self.push(images, retries, registry_config, skip_tag)
        except JKubeError as exc:
            _LOG.error("Build failed: %s", exc)
            self.hub.summary.set_failure_if_summary_enabled_or_raise(self.summary_enabled, str(exc), lambda: exc)
            return False
        return True


def build_and_push(
    config: JKubeConfig,
    summary: SummaryRecorder,
    cluster: Optional[ClusterClient] = None,
    **hub_options: Any,
) -> bool:
    """Build and push every image of ``config`` with its retry, registry and tag settings."""

    operations = BuildOperations.from_config(config, summary, cluster, **hub_options)
    return operations.build_and_push(config.images, config.retries, config.push_registry, config.skip_tag)
