"""
版本选择服务

获取正式版与测试通道清单，按测试密钥选出生效的清单并通知订阅者。
"""

import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from loguru import logger

from hooksync.models import ReleaseManifest, RolloutBucket
from hooksync.services.api_client import ManifestClient

DEFAULT_BETA_TRACK = "staging"

ManifestListener = Callable[[Optional[ReleaseManifest]], None]


def beta_track_name(beta_kind: Optional[str]) -> str:
    return beta_kind or DEFAULT_BETA_TRACK


def select_manifest(
    release: ReleaseManifest,
    staging: Optional[ReleaseManifest],
    beta_key: Optional[str],
) -> Tuple[ReleaseManifest, bool]:
    """
    选择生效的清单

    仅当测试密钥非空、测试清单存在且其 Key 与密钥相同时使用测试清单。

    Returns:
        tuple: (清单, 是否为测试版)
    """
    if beta_key and staging is not None and staging.rollout_key == beta_key:
        return staging, True
    return release, False


class ManifestPublisher:
    """
    生效清单的发布者

    只有在值发生变化时才通知订阅者。
    """

    def __init__(self):
        self._value: Optional[ReleaseManifest] = None
        self._listeners: List[ManifestListener] = []
        self._lock = threading.Lock()

    @property
    def value(self) -> Optional[ReleaseManifest]:
        with self._lock:
            return self._value

    def subscribe(self, listener: ManifestListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ManifestListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, value: Optional[ReleaseManifest]) -> bool:
        """
        发布新值

        Returns:
            值是否发生了变化
        """
        with self._lock:
            if self._value == value:
                return False
            self._value = value
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(value)
            except Exception:
                logger.exception("[清单] 订阅者处理清单变更时出错")
        return True


@dataclass(frozen=True)
class Resolution:
    """一次版本选择的结果"""

    manifest: ReleaseManifest
    release: ReleaseManifest
    staging: Optional[ReleaseManifest]
    is_staging: bool


class VersionResolver:
    """版本选择器"""

    def __init__(
        self,
        client: ManifestClient,
        bucket: RolloutBucket,
        publisher: Optional[ManifestPublisher] = None,
    ):
        self.client = client
        self.bucket = bucket
        self.publisher = publisher or ManifestPublisher()

    async def fetch(
        self, beta_kind: Optional[str], beta_key: Optional[str]
    ) -> Tuple[ReleaseManifest, Optional[ReleaseManifest]]:
        """获取正式版清单，有测试密钥时一并获取测试通道清单"""
        release = await self.client.get_release(self.bucket)

        staging = None
        if beta_key:
            staging = await self.client.get_track(beta_track_name(beta_kind))

        return release, staging

    async def resolve(
        self, beta_kind: Optional[str] = None, beta_key: Optional[str] = None
    ) -> Resolution:
        """
        选出生效的清单并发布

        网络错误直接向上抛出，不回退到缓存的清单。
        """
        release, staging = await self.fetch(beta_kind, beta_key)
        manifest, is_staging = select_manifest(release, staging, beta_key)

        if is_staging:
            logger.info(
                f"[更新] 使用测试版 {beta_track_name(beta_kind)} ({manifest.assembly_version})"
            )
        else:
            logger.info(f"[更新] 使用正式版 ({manifest.assembly_version})")

        self.publisher.publish(manifest)
        return Resolution(
            manifest=manifest,
            release=release,
            staging=staging,
            is_staging=is_staging,
        )
