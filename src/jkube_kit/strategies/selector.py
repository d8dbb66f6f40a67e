"""Resolution of the build strategy used for an invocation."""
from __future__ import annotations

import logging
from typing import Dict, Type

from ..config import BuildStrategyKind
from ..exceptions import ConfigurationError
from .base import BuildServiceHub, BuildStrategy
from .buildpacks import BuildpacksBuildStrategy
from .docker import DockerBuildStrategy
from .jib import JibBuildStrategy
from .s2i import S2IBuildStrategy
from .spring import SpringBuildStrategy

_LOG = logging.getLogger(__name__)

STRATEGIES: Dict[BuildStrategyKind, Type[BuildStrategy]] = {
    BuildStrategyKind.DOCKER: DockerBuildStrategy,
    BuildStrategyKind.S2I: S2IBuildStrategy,
    BuildStrategyKind.JIB: JibBuildStrategy,
    BuildStrategyKind.BUILDPACKS: BuildpacksBuildStrategy,
    BuildStrategyKind.SPRING: SpringBuildStrategy,
}


def select_strategy(hub: BuildServiceHub) -> BuildStrategy:
    """Pick the strategy for ``hub``.

    An explicitly configured strategy always wins and must be applicable.
    Without one, the Spring Boot strategy is used when a cluster connection is
    available and the project supports it, otherwise the Docker daemon strategy.
    """

    configured = hub.build_service_config.build_strategy
    if configured is not None:
        strategy = STRATEGIES[configured](hub)
        if not strategy.is_applicable():
            raise ConfigurationError(f"Build strategy '{configured.value}' is not applicable to this project")
        _LOG.debug("Using configured build strategy %s", configured.value)
        return strategy

    spring = SpringBuildStrategy(hub)
    if hub.cluster is not None and spring.is_applicable():
        _LOG.info("Spring Boot build image support detected, using the spring build strategy")
        return spring
    return DockerBuildStrategy(hub)
