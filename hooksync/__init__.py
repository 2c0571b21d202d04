"""
HookSync

插件载荷、托管运行时与资源包的更新协调器。
"""

__version__ = "0.1.0"

from hooksync.logger import setup_logger
from hooksync.models import (
    HookSyncConfig,
    ReleaseManifest,
    RolloutBucket,
    UpdateState,
    UpdateStep,
)
from hooksync.orchestrator import UpdateOrchestrator

__all__ = [
    "__version__",
    "setup_logger",
    "HookSyncConfig",
    "ReleaseManifest",
    "RolloutBucket",
    "UpdateState",
    "UpdateStep",
    "UpdateOrchestrator",
]
