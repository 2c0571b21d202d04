"""
文件校验器

实现载荷目录的可读性探测、MD5 摘要计算和完整性清单比对。
"""

import hashlib
import json
import os
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence

import aiofiles
from loguru import logger

HASHES_FILE = "hashes.json"
REQUIRED_PAYLOAD_FILES = ("Dalamud.Injector.exe", "Dalamud.dll", "ImGuiScene.dll")


def normalize_key(key: str) -> str:
    """清单中的相对路径统一使用正斜杠"""
    return key.replace("\\", "/")


class HashVerifier:
    """载荷完整性校验器"""

    def __init__(
        self,
        required_files: Sequence[str] = REQUIRED_PAYLOAD_FILES,
        manifest_name: str = HASHES_FILE,
    ):
        self.required_files = tuple(required_files)
        self.manifest_name = manifest_name

    @staticmethod
    async def calc_digest(file_path: Path) -> str:
        """
        计算文件的 MD5 值

        Args:
            file_path: 文件路径

        Returns:
            大写十六进制摘要

        Raises:
            OSError: 文件不存在或无法读取
        """
        md5 = hashlib.md5()
        async with aiofiles.open(file_path, "rb") as f:
            while True:
                data = await f.read(65536)
                if not data:
                    break
                md5.update(data)
        return md5.hexdigest().upper()

    @staticmethod
    async def can_read(file_path: Path) -> bool:
        """打开文件并读取一个字节，确认文件没有被占用或损坏"""
        try:
            async with aiofiles.open(file_path, "rb") as f:
                await f.read(1)
        except (IOError, OSError):
            return False
        return True

    @staticmethod
    def load_manifest(manifest_path: Path) -> Dict[str, str]:
        """读取 hashes.json"""
        with open(manifest_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{manifest_path} 不是 JSON 对象")
        return {normalize_key(k): str(v) for k, v in data.items()}

    async def check_manifest(self, directory: Path, manifest: Dict[str, str]) -> bool:
        """
        按清单逐个比对文件摘要

        Args:
            directory: 清单所在目录
            manifest: 相对路径 -> 预期摘要

        Returns:
            全部匹配返回 True，遇到第一个不匹配或异常返回 False
        """
        logger.debug(f"[校验] 检查目录完整性: {directory}")
        try:
            for rel_path, expected in manifest.items():
                file_path = Path(directory, *normalize_key(rel_path).split("/"))
                actual = await self.calc_digest(file_path)
                if actual != expected.upper():
                    logger.error(
                        f"[校验] 摘要不匹配: {file_path} (预期 {expected}, 实际 {actual})"
                    )
                    return False
                logger.trace(f"[校验] OK: {file_path} ({actual})")
        except Exception as e:
            logger.error(f"[校验] 完整性检查失败: {e}")
            return False
        return True

    async def verify(self, directory: Path) -> bool:
        """
        校验已安装的载荷目录

        必需文件可读、hashes.json 存在且所有条目摘要匹配时返回 True。
        任何异常都视为校验失败，不会向上抛出。
        """
        directory = Path(directory)
        try:
            if not directory.is_dir():
                logger.debug(f"[校验] 目录不存在: {directory}")
                return False

            for name in self.required_files:
                if not await self.can_read(directory / name):
                    logger.error(f"[校验] 无法读取文件: {name}")
                    return False

            manifest_path = directory / self.manifest_name
            if not manifest_path.is_file():
                logger.error(f"[校验] 缺少 {self.manifest_name}")
                return False

            manifest = self.load_manifest(manifest_path)
            return await self.check_manifest(directory, manifest)
        except Exception as e:
            logger.error(f"[校验] 载荷完整性校验失败: {e}")
            return False

    async def build_manifest(
        self, directory: Path, exclude: Optional[Iterable[str]] = None
    ) -> Dict[str, str]:
        """为目录下所有文件生成清单（相对路径 -> 摘要）"""
        directory = Path(directory)
        skipped = set(exclude or ())
        manifest: Dict[str, str] = {}
        for root, _dirs, files in os.walk(directory):
            for name in sorted(files):
                file_path = Path(root, name)
                rel_path = file_path.relative_to(directory).as_posix()
                if rel_path in skipped:
                    continue
                manifest[rel_path] = await self.calc_digest(file_path)
        return manifest

    @staticmethod
    async def write_manifest(manifest_path: Path, manifest: Dict[str, str]) -> None:
        async with aiofiles.open(manifest_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(manifest, indent=2, sort_keys=True))
