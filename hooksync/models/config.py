"""
配置模型

定义 HookSync 的配置数据类及其校验逻辑。
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from hooksync.exceptions import ConfigValidationError
from hooksync.models.manifest import RolloutBucket

DEFAULT_MANIFEST_BASE = "https://aonyx.ffxiv.wang/Dalamud/Release/VersionInfo?track="
DEFAULT_PACKAGE_INDEX = "https://api.nuget.org/v3-flatcontainer"
DEFAULT_TIMEOUT = 15 * 60
DEFAULT_MAX_TRIES = 10
DEFAULT_SETTLE_DELAY = 1.0


def _require_path(section: Dict[str, Any], key: str) -> Path:
    value = section.get(key)
    if not value:
        raise ConfigValidationError(
            f"缺少路径配置: paths.{key}", context={"key": key}
        )
    return Path(value).expanduser()


def _positive_number(section: Dict[str, Any], key: str, default, kind=float):
    value = section.get(key, default)
    try:
        value = kind(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(
            f"{key} 必须是数字", context={"key": key, "value": value}
        )
    if value <= 0:
        raise ConfigValidationError(
            f"{key} 必须大于 0", context={"key": key, "value": value}
        )
    return value


@dataclass
class PathsConfig:
    """本地目录配置"""

    addon_dir: Path
    runtime_dir: Path
    asset_dir: Path
    game_dir: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PathsConfig":
        game_dir = data.get("game_dir")
        return cls(
            addon_dir=_require_path(data, "addon_dir"),
            runtime_dir=_require_path(data, "runtime_dir"),
            asset_dir=_require_path(data, "asset_dir"),
            game_dir=Path(game_dir).expanduser() if game_dir else None,
        )


@dataclass
class RemoteConfig:
    """远程服务配置"""

    manifest_base: str = DEFAULT_MANIFEST_BASE
    package_index: str = DEFAULT_PACKAGE_INDEX
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteConfig":
        return cls(
            manifest_base=data.get("manifest_base", DEFAULT_MANIFEST_BASE),
            package_index=data.get("package_index", DEFAULT_PACKAGE_INDEX).rstrip("/"),
            timeout=_positive_number(data, "timeout", DEFAULT_TIMEOUT),
        )


@dataclass
class UpdateConfig:
    """更新行为配置"""

    rollout_bucket: Optional[RolloutBucket] = None
    beta_kind: str = ""
    beta_key: str = ""
    force_proxy: bool = False
    max_tries: int = DEFAULT_MAX_TRIES
    settle_delay: float = DEFAULT_SETTLE_DELAY
    runner_override: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UpdateConfig":
        bucket = data.get("rollout_bucket")
        if bucket is not None:
            try:
                bucket = RolloutBucket(bucket)
            except ValueError:
                raise ConfigValidationError(
                    "rollout_bucket 必须为 Canary 或 Control",
                    context={"value": bucket},
                )

        settle_delay = data.get("settle_delay", DEFAULT_SETTLE_DELAY)
        if not isinstance(settle_delay, (int, float)) or settle_delay < 0:
            raise ConfigValidationError(
                "settle_delay 不能为负数", context={"value": settle_delay}
            )

        runner_override = data.get("runner_override")
        return cls(
            rollout_bucket=bucket,
            beta_kind=data.get("beta_kind") or "",
            beta_key=data.get("beta_key") or "",
            force_proxy=bool(data.get("force_proxy", False)),
            max_tries=_positive_number(data, "max_tries", DEFAULT_MAX_TRIES, int),
            settle_delay=float(settle_delay),
            runner_override=Path(runner_override) if runner_override else None,
        )


@dataclass
class HookSyncConfig:
    """HookSync 完整配置"""

    paths: PathsConfig
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    update: UpdateConfig = field(default_factory=UpdateConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HookSyncConfig":
        if not isinstance(data, dict):
            raise ConfigValidationError("配置文件顶层必须是表/对象")
        if "paths" not in data:
            raise ConfigValidationError("缺少 [paths] 配置段")

        return cls(
            paths=PathsConfig.from_dict(data["paths"]),
            remote=RemoteConfig.from_dict(data.get("remote", {})),
            update=UpdateConfig.from_dict(data.get("update", {})),
        )
