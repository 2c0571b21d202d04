"""
版本清单客户端

请求正式版与测试通道的版本清单。
"""

import json
from typing import Optional

import aiohttp
from loguru import logger

from hooksync.exceptions import ManifestError
from hooksync.models import ReleaseManifest, RolloutBucket
from hooksync.models.config import DEFAULT_MANIFEST_BASE, DEFAULT_TIMEOUT


class ManifestClient:
    """版本清单 API 客户端"""

    def __init__(
        self,
        base_url: str = DEFAULT_MANIFEST_BASE,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url
        self.timeout = timeout

    def _session(self) -> aiohttp.ClientSession:
        """每次请求新建 session，避免跨事件循环复用"""
        return aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            headers={"Cache-Control": "no-cache"},
        )

    async def get_release(self, bucket: RolloutBucket) -> ReleaseManifest:
        """
        获取正式版清单

        Raises:
            ManifestError: 状态码异常或内容无法解析
            aiohttp.ClientError: 网络错误
        """
        url = f"{self.base_url}release&bucket={bucket.value}"
        logger.debug(f"[清单] 请求正式版: {url}")
        async with self._session() as session:
            async with session.get(url) as response:
                if response.status != 200:
                    raise ManifestError(
                        f"清单请求失败 (状态码: {response.status})",
                        response=response,
                    )
                return ReleaseManifest.from_json(await response.text())

    async def get_track(self, track: str) -> Optional[ReleaseManifest]:
        """
        获取测试通道清单

        测试通道清单按宽松方式解析：返回 null、不是对象或字段不全时，
        都视为该通道当前没有可用的测试版。

        Returns:
            清单，服务端返回 400 (通道不存在) 或清单不可用时为 None
        """
        url = f"{self.base_url}{track}"
        logger.debug(f"[清单] 请求测试通道: {url}")
        async with self._session() as session:
            async with session.get(url) as response:
                if response.status == 400:
                    logger.info(f"[清单] 测试通道 '{track}' 不存在")
                    return None
                if response.status != 200:
                    raise ManifestError(
                        f"测试通道清单请求失败 (状态码: {response.status})",
                        response=response,
                    )
                text = await response.text()

        if not text.strip():
            logger.info(f"[清单] 测试通道 '{track}' 没有清单")
            return None

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ManifestError(
                f"测试通道清单不是合法的 JSON: {e}", context={"track": track}
            )

        if not isinstance(data, dict):
            logger.info(f"[清单] 测试通道 '{track}' 没有清单")
            return None

        try:
            return ReleaseManifest.from_dict(data)
        except ManifestError as e:
            logger.warning(f"[清单] 测试通道 '{track}' 清单不可用，忽略: {e}")
            return None
