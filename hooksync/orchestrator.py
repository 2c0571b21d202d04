"""
更新协调器

驱动清单选择、载荷校验与下载、运行时准备、资源补全和最终校验，
并负责重试与代理回退策略。
"""

import asyncio
import shutil
import threading
from pathlib import Path
from typing import Optional

import aiofiles
import aiohttp
from loguru import logger

from hooksync.collaborators import (
    AssetManager,
    GameProbe,
    GameVersionReader,
    LocalAssetManager,
    LoggingProgressSink,
    NullUniqueIdCache,
    ProcessGameProbe,
    ProgressSink,
    UniqueIdCache,
    read_game_version,
)
from hooksync.download import Downloader, HashVerifier
from hooksync.exceptions import (
    DownloadError,
    EnsureError,
    IntegrityError,
    InvalidStateError,
    ManifestError,
)
from hooksync.models import (
    HookSyncConfig,
    ReleaseManifest,
    RolloutBucket,
    StepKind,
    StepResult,
    UpdateState,
    UpdateStep,
)
from hooksync.models.config import (
    DEFAULT_MAX_TRIES,
    DEFAULT_PACKAGE_INDEX,
    DEFAULT_SETTLE_DELAY,
    DEFAULT_TIMEOUT,
)
from hooksync.packager import ArchivePlacer, recreate_directory
from hooksync.services import (
    ManifestClient,
    ManifestPublisher,
    RuntimeProvisioner,
    VersionResolver,
)
from hooksync.services.version_resolver import ManifestListener

HOOKS_DIR = "Hooks"
DEV_ALIAS = "dev"
RUNNER_NAME = "Dalamud.Injector.exe"
VERSION_FILE = "version.json"


def classify_error(error: BaseException) -> StepKind:
    """把异常归类为步骤结果类型"""
    if isinstance(error, IntegrityError):
        return StepKind.INTEGRITY_ERROR
    if isinstance(
        error, (DownloadError, ManifestError, aiohttp.ClientError, asyncio.TimeoutError)
    ):
        return StepKind.NETWORK_ERROR
    return StepKind.EXTRACT_ERROR


class UpdateOrchestrator(ProgressSink):
    """
    更新协调器

    每次 run() 在后台线程中执行最多 max_tries 次完整的更新流程。
    调用方通过 state 轮询结果，或订阅生效清单的变更。
    """

    def __init__(
        self,
        addon_dir: Path,
        runtime_dir: Path,
        asset_dir: Path,
        asset_manager: AssetManager,
        uid_cache: Optional[UniqueIdCache] = None,
        overlay: Optional[ProgressSink] = None,
        game_probe: Optional[GameProbe] = None,
        game_version_reader: GameVersionReader = read_game_version,
        rollout_bucket: Optional[RolloutBucket] = None,
        manifest_client: Optional[ManifestClient] = None,
        downloader: Optional[Downloader] = None,
        placer: Optional[ArchivePlacer] = None,
        verifier: Optional[HashVerifier] = None,
        package_index: str = DEFAULT_PACKAGE_INDEX,
        timeout: float = DEFAULT_TIMEOUT,
        max_tries: int = DEFAULT_MAX_TRIES,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ):
        self.addon_dir = Path(addon_dir)
        self.runtime_dir = Path(runtime_dir)
        self.asset_root = Path(asset_dir)
        self.asset_manager = asset_manager
        self.uid_cache = uid_cache or NullUniqueIdCache()
        self.overlay = overlay or LoggingProgressSink()
        self.game_probe = game_probe or ProcessGameProbe()
        self.game_version_reader = game_version_reader
        self.timeout = timeout
        self.max_tries = max_tries
        self.runner_override: Optional[Path] = None

        self.rollout_bucket = rollout_bucket or RolloutBucket.sample()

        self.publisher = ManifestPublisher()
        self.resolver = VersionResolver(
            manifest_client or ManifestClient(timeout=timeout),
            self.rollout_bucket,
            self.publisher,
        )
        self.downloader = downloader or Downloader(progress_callback=self.report_progress)
        self.placer = placer or ArchivePlacer()
        self.verifier = verifier or HashVerifier()
        self.runtime = RuntimeProvisioner(
            self.runtime_dir,
            self.downloader,
            placer=self.placer,
            verifier=self.verifier,
            package_index=package_index,
            timeout=timeout,
            settle_delay=settle_delay,
        )

        self._lock = threading.Lock()
        self._state = UpdateState.UNKNOWN
        self._fatal_error: Optional[EnsureError] = None
        self._runner: Optional[Path] = None
        self._asset_dir: Optional[Path] = None
        self._asset_version: Optional[int] = None
        self._is_staging = False
        self._force_proxy = False
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(
        cls,
        config: HookSyncConfig,
        asset_manager: Optional[AssetManager] = None,
        **kwargs,
    ) -> "UpdateOrchestrator":
        """根据配置文件构建协调器"""
        orchestrator = cls(
            addon_dir=config.paths.addon_dir,
            runtime_dir=config.paths.runtime_dir,
            asset_dir=config.paths.asset_dir,
            asset_manager=asset_manager or LocalAssetManager(),
            rollout_bucket=config.update.rollout_bucket,
            manifest_client=ManifestClient(
                config.remote.manifest_base, config.remote.timeout
            ),
            package_index=config.remote.package_index,
            timeout=config.remote.timeout,
            max_tries=config.update.max_tries,
            settle_delay=config.update.settle_delay,
            **kwargs,
        )
        orchestrator.runner_override = config.update.runner_override
        return orchestrator

    # ---- 对外发布的状态 ----

    @property
    def state(self) -> UpdateState:
        with self._lock:
            return self._state

    @property
    def fatal_error(self) -> Optional[EnsureError]:
        """最近一次失败的原因"""
        with self._lock:
            return self._fatal_error

    @property
    def is_staging(self) -> bool:
        with self._lock:
            return self._is_staging

    @property
    def force_proxy(self) -> bool:
        return self._force_proxy

    @property
    def resolved_manifest(self) -> Optional[ReleaseManifest]:
        return self.publisher.value

    @property
    def asset_dir(self) -> Optional[Path]:
        with self._lock:
            return self._asset_dir

    @property
    def asset_version(self) -> Optional[int]:
        with self._lock:
            return self._asset_version

    @property
    def runner(self) -> Path:
        """注入器路径，设置了 runner_override 时优先使用"""
        if self.runner_override is not None:
            return self.runner_override
        with self._lock:
            runner = self._runner
        if runner is None:
            raise InvalidStateError("注入器尚未准备好")
        return runner

    @property
    def hooks_dir(self) -> Path:
        return self.addon_dir / HOOKS_DIR

    def subscribe(self, listener: ManifestListener) -> None:
        """订阅生效清单的变更"""
        self.publisher.subscribe(listener)

    def unsubscribe(self, listener: ManifestListener) -> None:
        self.publisher.unsubscribe(listener)

    # ---- 进度显示 ----

    def set_step(self, step: UpdateStep) -> None:
        self.overlay.set_step(step)

    def set_visible(self) -> None:
        self.overlay.set_visible()

    def set_invisible(self) -> None:
        self.overlay.set_invisible()

    def report_progress(
        self, total: Optional[int], downloaded: int, fraction: Optional[float]
    ) -> None:
        self.overlay.report_progress(total, downloaded, fraction)

    # ---- 运行 ----

    def run(
        self,
        beta_kind: Optional[str] = None,
        beta_key: Optional[str] = None,
        force_proxy: bool = False,
    ) -> threading.Thread:
        """在后台线程启动更新，立即返回；更新进行中时抛出 InvalidStateError"""
        self._begin(force_proxy)
        thread = threading.Thread(
            target=asyncio.run,
            args=(self._update_loop(beta_kind, beta_key),),
            name="hooksync-update",
            daemon=True,
        )
        self._thread = thread
        thread.start()
        return thread

    async def run_async(
        self,
        beta_kind: Optional[str] = None,
        beta_key: Optional[str] = None,
        force_proxy: bool = False,
    ) -> UpdateState:
        """在当前事件循环中执行更新并返回最终状态"""
        self._begin(force_proxy)
        return await self._update_loop(beta_kind, beta_key)

    def wait(self, timeout: Optional[float] = None) -> UpdateState:
        """等待后台更新结束"""
        if self._thread is not None:
            self._thread.join(timeout)
        return self.state

    def _begin(self, force_proxy: bool) -> None:
        """
        Raises:
            InvalidStateError: 已有更新正在进行
        """
        with self._lock:
            if self._state is UpdateState.RUNNING:
                raise InvalidStateError("更新已在进行中")
            self._state = UpdateState.RUNNING
            self._fatal_error = None
            self._is_staging = False
        logger.info(f"[更新] 开始... (force_proxy: {force_proxy})")
        self._force_proxy = force_proxy
        self.publisher.publish(None)

    async def _update_loop(
        self, beta_kind: Optional[str], beta_key: Optional[str]
    ) -> UpdateState:
        is_updated = False

        for tries in range(self.max_tries):
            try:
                result = await self._attempt(beta_kind, beta_key)
            except Exception as e:
                result = self._failure("更新过程出错", e)
            if result.ok:
                is_updated = True
                break

            logger.opt(exception=result.error).error(
                f"[更新] 更新失败 ({result.kind.value}), 第 {tries + 1}/{self.max_tries} 次"
            )
            with self._lock:
                self._fatal_error = result.error
            self._force_proxy = True

        state = UpdateState.DONE if is_updated else UpdateState.NO_INTEGRITY
        with self._lock:
            self._state = state
        return state

    def _failure(self, message: str, error: BaseException) -> StepResult:
        return StepResult.failure(classify_error(error), EnsureError(message, error))

    async def _attempt(
        self, beta_kind: Optional[str], beta_key: Optional[str]
    ) -> StepResult:
        """执行一次完整的更新流程"""
        self.downloader.force_proxy = self._force_proxy

        try:
            resolution = await self.resolver.resolve(beta_kind, beta_key)
        except Exception as e:
            return self._failure("无法获取版本清单", e)

        manifest = resolution.manifest
        if resolution.is_staging:
            with self._lock:
                self._is_staging = True

        version_dir = self.hooks_dir / manifest.assembly_version

        result = await self._ensure_payload(version_dir, manifest)
        if not result.ok:
            return result

        if manifest.runtime_required:
            result = await self._ensure_runtime(manifest)
            if not result.ok:
                return result

        result = await self._ensure_assets()
        if not result.ok:
            return result

        if not await self.verifier.verify(version_dir):
            return StepResult.failure(
                StepKind.INTEGRITY_ERROR,
                EnsureError(
                    "完成后仍未通过完整性校验",
                    IntegrityError(
                        "载荷校验失败", context={"directory": str(version_dir)}
                    ),
                ),
            )

        try:
            async with aiofiles.open(
                version_dir / VERSION_FILE, "w", encoding="utf-8"
            ) as f:
                await f.write(manifest.to_json())
        except OSError as e:
            return self._failure("无法写入 version.json", e)

        logger.success(
            f"[更新] 已就绪: 游戏 {manifest.supported_game_version}, "
            f"载荷 {manifest.assembly_version} (运行时 {manifest.runtime_version}, "
            f"资源 {self.asset_version})"
        )

        with self._lock:
            self._runner = version_dir / RUNNER_NAME
        self.set_step(UpdateStep.STARTING)
        self.report_progress(None, 0, None)
        return StepResult.success()

    async def _ensure_payload(
        self, version_dir: Path, manifest: ReleaseManifest
    ) -> StepResult:
        if version_dir.exists() and await self.verifier.verify(version_dir):
            return StepResult.success()

        logger.info("[更新] 载荷不存在或校验失败，重新下载")
        self.set_step(UpdateStep.PAYLOAD)

        try:
            await self._download_payload(version_dir, manifest)
            self.cleanup_old_versions(manifest.assembly_version)
            self.uid_cache.reset()
        except Exception as e:
            return self._failure("无法下载载荷", e)

        return StepResult.success()

    async def _download_payload(
        self, version_dir: Path, manifest: ReleaseManifest
    ) -> None:
        archive_path = await self.downloader.download_temp(
            manifest.download_url, self.timeout, suffix=".zip"
        )
        try:
            self.placer.extract(archive_path, version_dir)
        finally:
            archive_path.unlink(missing_ok=True)

        try:
            dev_dir = self.hooks_dir / DEV_ALIAS
            recreate_directory(dev_dir)
            shutil.copytree(version_dir, dev_dir, dirs_exist_ok=True)
        except Exception:
            logger.exception("[更新] 无法复制到 dev 目录")

    def cleanup_old_versions(self, current_version: str) -> None:
        """删除旧版本目录，保留 dev 和当前版本；游戏运行时不做任何删除"""
        if self.game_probe.is_game_running():
            logger.info("[清理] 游戏正在运行，跳过清理")
            return

        if not self.hooks_dir.exists():
            return

        for directory in self.hooks_dir.iterdir():
            if not directory.is_dir():
                continue
            if directory.name in (DEV_ALIAS, current_version):
                continue
            try:
                shutil.rmtree(directory)
                logger.debug(f"[清理] 已删除旧版本 {directory.name}")
            except OSError:
                logger.exception(f"[清理] 无法删除 {directory}")

    async def _ensure_runtime(self, manifest: ReleaseManifest) -> StepResult:
        logger.info(f"[更新] 检查 .NET 运行时 {manifest.runtime_version}")
        try:
            if await self.runtime.needs_provisioning(manifest.runtime_version):
                self.set_step(UpdateStep.RUNTIME)
                await self.runtime.provision(manifest.runtime_version)
        except Exception as e:
            return self._failure("无法确保运行时", e)
        return StepResult.success()

    async def _ensure_assets(self) -> StepResult:
        logger.debug("[更新] 检查资源...")
        try:
            self.set_step(UpdateStep.ASSETS)
            self.report_progress(None, 0, None)
            result = await self.asset_manager.ensure_assets(self, self.asset_root)
        except Exception as e:
            return self._failure("无法确保资源", e)

        with self._lock:
            self._asset_dir = result.asset_dir
            self._asset_version = result.version
        return StepResult.success()

    def recheck_version(self, game_path: Path) -> Optional[bool]:
        """
        检查已安装的载荷是否支持当前游戏版本

        Returns:
            尚未完成更新时为 None；设置了 runner_override 时总是 True
        """
        if self.state is not UpdateState.DONE:
            return None

        if self.runner_override is not None:
            return True

        info = ReleaseManifest.load(self.runner.parent / VERSION_FILE)
        return self.game_version_reader(Path(game_path)) == info.supported_game_version
