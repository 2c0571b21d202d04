"""
运行时准备服务

确保指定版本的 .NET 运行时存在且完整，缺失或过期时从包索引下载两个组件包并组装。
"""

import asyncio
import os
from pathlib import Path
from typing import List, Optional

import aiofiles
from loguru import logger

from hooksync.download import Downloader, HashVerifier
from hooksync.models import RuntimeState
from hooksync.models.config import (
    DEFAULT_PACKAGE_INDEX,
    DEFAULT_SETTLE_DELAY,
    DEFAULT_TIMEOUT,
)
from hooksync.packager import ArchivePlacer, recreate_directory

# 最早发布的版本没有写入版本标记
LEGACY_RUNTIME_VERSION = "5.0.6"
DEFAULT_FRAMEWORK_MAJOR_MINOR = "9.0"

VERSION_MARKER = "version"
RUNTIME_HASHES_FILE = "runtime.hashes.json"

NETCORE_FRAMEWORK = "Microsoft.NETCore.App"
DESKTOP_FRAMEWORK = "Microsoft.WindowsDesktop.App"
RUNTIME_COMPONENTS = (
    ("microsoft.netcore.app.runtime.win-x64", NETCORE_FRAMEWORK),
    ("microsoft.windowsdesktop.app.runtime.win-x64", DESKTOP_FRAMEWORK),
)
HOSTFXR_NAME = "hostfxr.dll"


def framework_major_minor(version: str) -> str:
    """取版本号的前两段，例如 9.0.11 -> 9.0"""
    parts = version.split(".")
    if len(parts) >= 2:
        return f"{parts[0]}.{parts[1]}"
    return DEFAULT_FRAMEWORK_MAJOR_MINOR


def package_url(index: str, package: str, version: str) -> str:
    version = version.lower()
    return f"{index.rstrip('/')}/{package}/{version}/{package}.{version}.nupkg"


class RuntimeProvisioner:
    """运行时准备器"""

    def __init__(
        self,
        runtime_root: Path,
        downloader: Downloader,
        placer: Optional[ArchivePlacer] = None,
        verifier: Optional[HashVerifier] = None,
        package_index: str = DEFAULT_PACKAGE_INDEX,
        timeout: float = DEFAULT_TIMEOUT,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ):
        self.runtime_root = Path(runtime_root)
        self.downloader = downloader
        self.placer = placer or ArchivePlacer()
        self.verifier = verifier or HashVerifier()
        self.package_index = package_index
        self.timeout = timeout
        self.settle_delay = settle_delay

    @property
    def marker_path(self) -> Path:
        return self.runtime_root / VERSION_MARKER

    @property
    def hashes_path(self) -> Path:
        return self.runtime_root / RUNTIME_HASHES_FILE

    def read_state(self) -> RuntimeState:
        """读取本地版本标记，缺失时视为最早的基线版本"""
        installed = LEGACY_RUNTIME_VERSION
        try:
            if self.marker_path.exists():
                installed = self.marker_path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"[运行时] 无法读取本地运行时版本: {e}")
        return RuntimeState(installed_version=installed, runtime_root=self.runtime_root)

    def required_paths(self, version: str) -> List[Path]:
        return [
            self.runtime_root / "host" / "fxr" / version,
            self.runtime_root / "shared" / NETCORE_FRAMEWORK / version,
            self.runtime_root / "shared" / DESKTOP_FRAMEWORK / version,
        ]

    async def check_hashes(self) -> bool:
        """
        比对运行时文件与上次准备时写入的摘要清单

        没有清单（旧版本安装）时视为通过。
        """
        if not self.hashes_path.exists():
            logger.debug("[运行时] 没有运行时摘要清单，跳过校验")
            return True
        manifest = self.verifier.load_manifest(self.hashes_path)
        return await self.verifier.check_manifest(self.runtime_root, manifest)

    async def needs_provisioning(self, required_version: str) -> bool:
        """判断是否需要重新准备运行时"""
        local_version = self.read_state().installed_version
        version_mismatch = local_version != required_version

        if not self.runtime_root.exists():
            self.runtime_root.mkdir(parents=True, exist_ok=True)

        # 只有版本一致时才检查摘要
        integrity = False
        if not version_mismatch:
            try:
                integrity = await self.check_hashes()
            except Exception:
                logger.exception("[运行时] 无法检查运行时完整性")

        missing = [p for p in self.required_paths(required_version) if not p.exists()]

        if version_mismatch or missing or not integrity:
            logger.info(
                f"[运行时] 缺失、过期或不完整: {local_version} -> {required_version}"
            )
            return True
        return False

    async def ensure(self, required_version: str) -> bool:
        """
        确保运行时可用

        Returns:
            是否重新准备了运行时
        """
        if not await self.needs_provisioning(required_version):
            logger.info(f"[运行时] .NET {required_version} 已就绪")
            return False

        await self.provision(required_version)
        return True

    async def provision(self, version: str) -> None:
        """
        下载并组装运行时

        任何异常都会中断并向上抛出，此时不会写入版本标记。
        """
        recreate_directory(self.runtime_root)

        # 等待目录删除真正生效
        await asyncio.sleep(self.settle_delay)

        major_minor = framework_major_minor(version)

        for package, framework in RUNTIME_COMPONENTS:
            url = package_url(self.package_index, package, version)
            logger.info(f"[运行时] 下载 {framework}: {url}")
            package_path = await self.downloader.download_temp(
                url, self.timeout, suffix=".nupkg"
            )
            try:
                self.placer.extract_package_subtree(
                    package_path, self.runtime_root, version, major_minor, framework
                )
            finally:
                package_path.unlink(missing_ok=True)

        self._relocate_hostfxr(version)

        manifest = await self.verifier.build_manifest(
            self.runtime_root, exclude={VERSION_MARKER, RUNTIME_HASHES_FILE}
        )
        await self.verifier.write_manifest(self.hashes_path, manifest)

        async with aiofiles.open(self.marker_path, "w", encoding="utf-8") as f:
            await f.write(version)

        logger.success(f"[运行时] .NET {version} 准备完成")

    def _relocate_hostfxr(self, version: str) -> None:
        source = self.runtime_root / "shared" / NETCORE_FRAMEWORK / version / HOSTFXR_NAME
        if not source.exists():
            logger.warning(f"[运行时] 组件包中没有 {HOSTFXR_NAME}")
            return

        target_dir = self.runtime_root / "host" / "fxr" / version
        target_dir.mkdir(parents=True, exist_ok=True)
        os.replace(source, target_dir / HOSTFXR_NAME)
        logger.debug(f"[运行时] 已移动 {HOSTFXR_NAME} 到 {target_dir}")
