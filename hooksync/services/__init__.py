"""
HookSync 服务层

包含业务逻辑服务：清单客户端、版本选择、运行时准备。
"""

from hooksync.services.api_client import ManifestClient
from hooksync.services.version_resolver import (
    ManifestPublisher,
    Resolution,
    VersionResolver,
    select_manifest,
)
from hooksync.services.runtime import RuntimeProvisioner

__all__ = [
    "ManifestClient",
    "ManifestPublisher",
    "Resolution",
    "VersionResolver",
    "select_manifest",
    "RuntimeProvisioner",
]
