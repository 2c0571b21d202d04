"""
外部协作者接口

定义进度界面、UID 缓存、资源管理器、游戏进程探测等接口及其默认实现。
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Iterable, Optional

import aiofiles
import psutil
from loguru import logger

from hooksync.models import AssetResult, UpdateStep

BASE_GAME_VERSION = "2012.01.01.0000.0000"
GAME_PROCESS_NAMES = ("ffxiv_dx11.exe", "ffxiv.exe")
ASSET_VERSION_FILE = "asset.ver"

GameVersionReader = Callable[[Path], str]


class ProgressSink(ABC):
    """进度显示接口"""

    @abstractmethod
    def set_step(self, step: UpdateStep) -> None:
        pass

    @abstractmethod
    def set_visible(self) -> None:
        pass

    @abstractmethod
    def set_invisible(self) -> None:
        pass

    @abstractmethod
    def report_progress(
        self, total: Optional[int], downloaded: int, fraction: Optional[float]
    ) -> None:
        """可能在任意线程上被调用"""


class UniqueIdCache(ABC):
    """载荷 UID 缓存"""

    @abstractmethod
    def reset(self) -> None:
        pass


class AssetManager(ABC):
    """资源包管理器"""

    @abstractmethod
    async def ensure_assets(self, sink: ProgressSink, asset_root: Path) -> AssetResult:
        """
        确保资源包完整

        Args:
            sink: 进度回调
            asset_root: 资源根目录

        Returns:
            AssetResult: 资源目录和版本
        """


class GameProbe(ABC):
    """游戏进程探测"""

    @abstractmethod
    def is_game_running(self) -> bool:
        pass


class LoggingProgressSink(ProgressSink):
    """
    日志进度显示

    没有界面时把步骤和进度写入日志，进度每 5% 记录一次。
    """

    def __init__(self, step_percent: float = 5.0):
        self.step_percent = step_percent
        self._last_percent = 0.0

    def set_step(self, step: UpdateStep) -> None:
        self._last_percent = 0.0
        logger.info(f"[进度] 当前步骤: {step.value}")

    def set_visible(self) -> None:
        logger.debug("[进度] 显示进度")

    def set_invisible(self) -> None:
        logger.debug("[进度] 隐藏进度")

    def report_progress(
        self, total: Optional[int], downloaded: int, fraction: Optional[float]
    ) -> None:
        if fraction is None:
            return
        percent = fraction * 100
        if percent < self._last_percent:
            self._last_percent = 0.0
        if percent - self._last_percent >= self.step_percent or percent >= 100:
            logger.info(f"[进度] {percent:.1f}% ({downloaded}/{total})")
            self._last_percent = percent


class NullUniqueIdCache(UniqueIdCache):
    """不做任何缓存"""

    def reset(self) -> None:
        logger.debug("[缓存] UID 缓存已重置")


class LocalAssetManager(AssetManager):
    """
    本地资源管理器

    只确保资源目录存在，并从 asset.ver 读取资源版本。
    """

    async def ensure_assets(self, sink: ProgressSink, asset_root: Path) -> AssetResult:
        asset_root = Path(asset_root)
        asset_root.mkdir(parents=True, exist_ok=True)

        version = 0
        version_file = asset_root / ASSET_VERSION_FILE
        if version_file.exists():
            async with aiofiles.open(version_file, "r", encoding="utf-8") as f:
                text = (await f.read()).strip()
            version = int(text) if text else 0

        sink.report_progress(None, 0, None)
        logger.info(f"[资源] 资源版本 {version}: {asset_root}")
        return AssetResult(asset_dir=asset_root, version=version)


class ProcessGameProbe(GameProbe):
    """通过进程列表判断游戏是否正在运行"""

    def __init__(self, process_names: Iterable[str] = GAME_PROCESS_NAMES):
        self.process_names = {name.lower() for name in process_names}

    def is_game_running(self) -> bool:
        try:
            for process in psutil.process_iter(attrs=["name"]):
                try:
                    name = process.info["name"]
                    if name and name.lower() in self.process_names:
                        logger.debug(f"[进程] 检测到游戏进程: {name}")
                        return True
                except (psutil.AccessDenied, psutil.NoSuchProcess):
                    continue
        except Exception as e:
            logger.warning(f"[进程] 无法检查游戏进程: {e}")
        return False


def read_game_version(game_path: Path) -> str:
    """读取游戏目录中的 ffxivgame.ver，不存在时返回基础版本"""
    version_file = Path(game_path) / "game" / "ffxivgame.ver"
    if not version_file.exists():
        return BASE_GAME_VERSION
    return version_file.read_text(encoding="utf-8").strip()
