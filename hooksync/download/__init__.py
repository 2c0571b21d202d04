"""
HookSync 下载层

包含单文件下载和载荷完整性校验。
"""

from hooksync.download.manager import Downloader, DownloadStats, ProgressCallback
from hooksync.download.verifier import (
    HashVerifier,
    HASHES_FILE,
    REQUIRED_PAYLOAD_FILES,
)

__all__ = [
    "Downloader",
    "DownloadStats",
    "ProgressCallback",
    "HashVerifier",
    "HASHES_FILE",
    "REQUIRED_PAYLOAD_FILES",
]
