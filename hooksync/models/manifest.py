"""
版本数据模型

定义远程版本清单、灰度分组、更新状态等数据类。
"""

import json
import random
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from hooksync.exceptions import ManifestError


class RolloutBucket(Enum):
    """灰度发布分组"""

    CANARY = "Canary"
    CONTROL = "Control"

    @classmethod
    def sample(cls, rng: Optional[random.Random] = None) -> "RolloutBucket":
        """随机抽取分组，约两成进入 Canary"""
        rng = rng or random.Random()
        return cls.CANARY if rng.randint(0, 8) >= 7 else cls.CONTROL


class UpdateState(Enum):
    """更新流程状态"""

    UNKNOWN = "unknown"
    RUNNING = "running"
    DONE = "done"
    NO_INTEGRITY = "no_integrity"


class UpdateStep(Enum):
    """进度界面显示的步骤"""

    PAYLOAD = "payload"
    RUNTIME = "runtime"
    ASSETS = "assets"
    STARTING = "starting"


# 远程 JSON 字段名 -> 属性名
_FIELD_KEYS = {
    "assembly_version": ("AssemblyVersion", "assemblyVersion"),
    "runtime_version": ("RuntimeVersion", "runtimeVersion"),
    "runtime_required": ("RuntimeRequired", "runtimeRequired"),
    "supported_game_version": ("SupportedGameVer", "supportedGameVersion"),
    "download_url": ("DownloadUrl", "downloadUrl"),
    "rollout_key": ("Key", "rolloutKey"),
}

_REQUIRED_FIELDS = ("assembly_version", "download_url")


def _is_safe_dir_name(name: str) -> bool:
    """版本号会被用作 Hooks 下的目录名"""
    if name in (".", "..") or ".." in name:
        return False
    return not any(sep in name for sep in ("/", "\\", ":"))


def _lookup(data: Dict[str, Any], field_name: str) -> Any:
    for key in _FIELD_KEYS[field_name]:
        if key in data:
            return data[key]
    return None


@dataclass(frozen=True)
class ReleaseManifest:
    """
    远程版本清单

    唯一标识一个可安装的载荷版本。
    """

    assembly_version: str
    runtime_version: str
    runtime_required: bool
    supported_game_version: str
    download_url: str
    rollout_key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReleaseManifest":
        """从远程 JSON 对象构建清单"""
        if not isinstance(data, dict):
            raise ManifestError(
                "版本清单格式错误: 应为 JSON 对象",
                context={"type": type(data).__name__},
            )

        missing = [name for name in _REQUIRED_FIELDS if not _lookup(data, name)]
        if missing:
            raise ManifestError(
                f"版本清单缺少字段: {', '.join(missing)}",
                context={"missing": missing},
            )

        assembly_version = str(_lookup(data, "assembly_version"))
        if not _is_safe_dir_name(assembly_version):
            raise ManifestError(
                f"版本号不是合法的目录名: {assembly_version}",
                context={"assembly_version": assembly_version},
            )

        runtime_version = str(_lookup(data, "runtime_version") or "")
        if runtime_version and not _is_safe_dir_name(runtime_version):
            raise ManifestError(
                f"运行时版本号不是合法的目录名: {runtime_version}",
                context={"runtime_version": runtime_version},
            )

        rollout_key = _lookup(data, "rollout_key")
        return cls(
            assembly_version=assembly_version,
            runtime_version=runtime_version,
            runtime_required=bool(_lookup(data, "runtime_required")),
            supported_game_version=str(_lookup(data, "supported_game_version") or ""),
            download_url=str(_lookup(data, "download_url")),
            rollout_key=str(rollout_key) if rollout_key is not None else None,
        )

    @classmethod
    def from_json(cls, text: str) -> "ReleaseManifest":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ManifestError(f"版本清单不是合法的 JSON: {e}")
        return cls.from_dict(data)

    @classmethod
    def load(cls, path: Path) -> "ReleaseManifest":
        """读取已安装目录中的 version.json"""
        return cls.from_json(Path(path).read_text(encoding="utf-8"))

    def to_dict(self) -> Dict[str, Any]:
        """序列化为与远程一致的字段名"""
        return {
            "AssemblyVersion": self.assembly_version,
            "SupportedGameVer": self.supported_game_version,
            "RuntimeVersion": self.runtime_version,
            "RuntimeRequired": self.runtime_required,
            "Key": self.rollout_key,
            "DownloadUrl": self.download_url,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass(frozen=True)
class AssetResult:
    """资源补全结果"""

    asset_dir: Path
    version: int


@dataclass
class RuntimeState:
    """本地运行时状态"""

    installed_version: str
    runtime_root: Path
