"""
HookSync 数据模型包

包含版本清单、步骤结果和配置模型定义。
"""

from hooksync.models.manifest import (
    RolloutBucket,
    UpdateState,
    UpdateStep,
    ReleaseManifest,
    AssetResult,
    RuntimeState,
)
from hooksync.models.result import StepKind, StepResult
from hooksync.models.config import (
    PathsConfig,
    RemoteConfig,
    UpdateConfig,
    HookSyncConfig,
)

__all__ = [
    # 版本模型
    "RolloutBucket",
    "UpdateState",
    "UpdateStep",
    "ReleaseManifest",
    "AssetResult",
    "RuntimeState",
    # 步骤结果
    "StepKind",
    "StepResult",
    # 配置模型
    "PathsConfig",
    "RemoteConfig",
    "UpdateConfig",
    "HookSyncConfig",
]
