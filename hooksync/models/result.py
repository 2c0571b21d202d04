"""
步骤结果

每个确保步骤返回一个 StepResult，由重试循环统一检查。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from hooksync.exceptions import HookSyncError


class StepKind(Enum):
    """步骤结果类型"""

    OK = "ok"
    NETWORK_ERROR = "network_error"
    INTEGRITY_ERROR = "integrity_error"
    EXTRACT_ERROR = "extract_error"


@dataclass(frozen=True)
class StepResult:
    """单个步骤的执行结果"""

    kind: StepKind
    error: Optional[HookSyncError] = None

    @property
    def ok(self) -> bool:
        return self.kind is StepKind.OK

    @classmethod
    def success(cls) -> "StepResult":
        return cls(StepKind.OK)

    @classmethod
    def failure(cls, kind: StepKind, error: HookSyncError) -> "StepResult":
        if kind is StepKind.OK:
            raise ValueError("failure() 需要一个错误类型")
        return cls(kind, error)
