"""
HookSync 统一异常体系

提供分层的异常结构，支持错误代码、上下文信息和 JSON 序列化。
"""

from typing import Any, Dict, Optional

import aiohttp


class HookSyncError(Exception):
    """HookSync 基础异常类"""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self._get_default_code()
        self.context = context or {}

    def _get_default_code(self) -> str:
        """获取默认错误代码"""
        return "E000"

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "type": self.__class__.__name__,
        }

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class ConfigError(HookSyncError):
    """配置相关错误"""

    def _get_default_code(self) -> str:
        return "E100"


class ConfigParseError(ConfigError):
    """配置解析错误"""

    def _get_default_code(self) -> str:
        return "E101"


class ConfigValidationError(ConfigError):
    """配置验证错误"""

    def _get_default_code(self) -> str:
        return "E102"


class ManifestError(HookSyncError):
    """版本清单请求或解析错误"""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        response: Optional[aiohttp.ClientResponse] = None,
    ):
        super().__init__(message, code, context)
        self.response = response
        if response is not None:
            self.context["status_code"] = response.status
            self.context["url"] = str(response.url)

    def _get_default_code(self) -> str:
        return "E200"


class DownloadError(HookSyncError):
    """下载相关错误"""

    def _get_default_code(self) -> str:
        return "E300"


class DownloadNetworkError(DownloadError):
    """下载网络错误"""

    def _get_default_code(self) -> str:
        return "E301"


class DownloadTimeoutError(DownloadError):
    """下载超时"""

    def _get_default_code(self) -> str:
        return "E304"


class IntegrityError(HookSyncError):
    """文件完整性校验失败"""

    def _get_default_code(self) -> str:
        return "E302"


class ExtractError(HookSyncError):
    """压缩包解压或放置错误"""

    def _get_default_code(self) -> str:
        return "E400"


class EnsureError(HookSyncError):
    """
    无法确保某一组件可用

    包装载荷下载、运行时准备或资源补全过程中的原始异常。
    """

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code, context)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause
            self.context["cause"] = repr(cause)

    def _get_default_code(self) -> str:
        return "E500"


class InvalidStateError(HookSyncError):
    """在错误的状态下访问结果"""

    def _get_default_code(self) -> str:
        return "E600"


__all__ = [
    "HookSyncError",
    "ConfigError",
    "ConfigParseError",
    "ConfigValidationError",
    "ManifestError",
    "DownloadError",
    "DownloadNetworkError",
    "DownloadTimeoutError",
    "IntegrityError",
    "ExtractError",
    "EnsureError",
    "InvalidStateError",
]
