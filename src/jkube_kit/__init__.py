"""Resource reconciliation, build strategies and undeploy for Kubernetes projects."""

from .config import ImageConfiguration, JKubeConfig, RegistryConfig  # noqa: F401
from .kube import ClusterClient  # noqa: F401
from .summary import SummaryRecorder  # noqa: F401

__all__ = ["ImageConfiguration", "JKubeConfig", "RegistryConfig", "ClusterClient", "SummaryRecorder"]
