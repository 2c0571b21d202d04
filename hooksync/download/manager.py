"""
下载器

执行单次 HTTP 传输：流式写入本地文件、进度回调、超时和代理地址改写。
整体重试由更新协调器负责，这里不做重试。
"""

import asyncio
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import aiofiles
import aiohttp
from loguru import logger

from hooksync.exceptions import (
    DownloadError,
    DownloadNetworkError,
    DownloadTimeoutError,
)

DIRECT_SEGMENT = "/File/Get/"
PROXY_SEGMENT = "/File/GetProxy/"

# (总大小, 已下载字节数, 完成比例)
ProgressCallback = Callable[[Optional[int], int, Optional[float]], None]


@dataclass
class DownloadStats:
    """下载统计"""

    completed: int = 0
    failed: int = 0
    bytes_downloaded: int = 0


class Downloader:
    """单文件下载器"""

    def __init__(
        self,
        progress_callback: Optional[ProgressCallback] = None,
        force_proxy: bool = False,
        chunk_size: int = 65536,
    ):
        self.force_proxy = force_proxy
        self.chunk_size = chunk_size
        self.stats = DownloadStats()
        self._progress_callback = progress_callback

    def rewrite_url(self, url: str) -> str:
        """强制代理时把直连路径改写为代理路径"""
        if self.force_proxy and DIRECT_SEGMENT in url:
            proxied = url.replace(DIRECT_SEGMENT, PROXY_SEGMENT)
            logger.debug(f"[下载] 使用代理地址: {proxied}")
            return proxied
        return url

    def _report(self, total: Optional[int], downloaded: int) -> None:
        if self._progress_callback is None:
            return
        fraction = downloaded / total if total else None
        self._progress_callback(total, downloaded, fraction)

    async def download(self, url: str, destination: Path, timeout: float) -> Path:
        """
        下载单个文件

        Args:
            url: 下载地址
            destination: 目标文件路径
            timeout: 整个传输的超时时间（秒）

        Returns:
            目标文件路径

        Raises:
            DownloadTimeoutError: 传输超时
            DownloadNetworkError: 连接失败或 HTTP 状态码异常
        """
        url = self.rewrite_url(url)
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"[下载] 开始: {url}")

        try:
            client_timeout = aiohttp.ClientTimeout(total=timeout)
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.get(url) as response:
                    if not 200 <= response.status < 300:
                        raise DownloadNetworkError(
                            f"HTTP {response.status}",
                            context={"url": url, "status": response.status},
                        )

                    total_size = response.content_length
                    if total_size:
                        logger.info(
                            f"[信息] 文件大小: {total_size / (1024 * 1024):.2f} MB"
                        )

                    async with aiofiles.open(destination, "wb") as f:
                        downloaded = 0
                        async for chunk in response.content.iter_chunked(
                            self.chunk_size
                        ):
                            await f.write(chunk)
                            downloaded += len(chunk)
                            self.stats.bytes_downloaded += len(chunk)
                            self._report(total_size, downloaded)

        except asyncio.TimeoutError as e:
            self._discard(destination)
            raise DownloadTimeoutError(
                f"下载超时 ({timeout:.0f}s)", context={"url": url}
            ) from e
        except aiohttp.ClientError as e:
            self._discard(destination)
            raise DownloadNetworkError(
                f"下载失败: {e}", context={"url": url}
            ) from e
        except DownloadError:
            self._discard(destination)
            raise

        self.stats.completed += 1
        logger.success(f"[完成] 已下载到 {destination}")
        return destination

    async def download_temp(self, url: str, timeout: float, suffix: str = "") -> Path:
        """下载到临时文件，调用方负责删除"""
        fd, name = tempfile.mkstemp(prefix="hooksync-", suffix=suffix)
        os.close(fd)
        return await self.download(url, Path(name), timeout)

    def _discard(self, destination: Path) -> None:
        """清理不完整的文件"""
        self.stats.failed += 1
        if destination.exists():
            try:
                destination.unlink()
            except OSError:
                logger.warning(f"[下载] 无法删除不完整的文件: {destination}")
