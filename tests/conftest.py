import hashlib
import io
import json
import zipfile
from pathlib import Path
from typing import Dict, Optional

import pytest

from hooksync.collaborators import AssetManager, GameProbe, ProgressSink, UniqueIdCache
from hooksync.exceptions import DownloadNetworkError
from hooksync.models import AssetResult, ReleaseManifest, RolloutBucket
from hooksync.orchestrator import UpdateOrchestrator

PAYLOAD_FILES = {
    "Dalamud.Injector.exe": b"injector-binary",
    "Dalamud.dll": b"core-library",
    "ImGuiScene.dll": b"imgui-scene",
    "plugins/Extra.dll": b"nested-file",
}

PAYLOAD_URL = "https://example.invalid/File/Get/payload-9.1.0.0.zip"


def md5_upper(data: bytes) -> str:
    return hashlib.md5(data).hexdigest().upper()


def hashes_for(files: Dict[str, bytes]) -> Dict[str, str]:
    return {name: md5_upper(data) for name, data in files.items()}


def write_payload(directory: Path, files: Dict[str, bytes] = PAYLOAD_FILES) -> Path:
    """写入载荷文件和对应的 hashes.json"""
    directory.mkdir(parents=True, exist_ok=True)
    for name, data in files.items():
        path = directory / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    (directory / "hashes.json").write_text(json.dumps(hashes_for(files)))
    return directory


def make_zip(entries: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return buffer.getvalue()


def payload_zip(files: Dict[str, bytes] = PAYLOAD_FILES) -> bytes:
    entries = dict(files)
    entries["hashes.json"] = json.dumps(hashes_for(files)).encode()
    return make_zip(entries)


def make_manifest(**overrides) -> ReleaseManifest:
    values = dict(
        assembly_version="9.1.0.0",
        runtime_version="8.0.1",
        runtime_required=False,
        supported_game_version="2024.06.18.0000.0000",
        download_url=PAYLOAD_URL,
        rollout_key=None,
    )
    values.update(overrides)
    return ReleaseManifest(**values)


class FakeManifestClient:
    """按预设返回清单，可模拟前若干次失败"""

    def __init__(
        self,
        release: Optional[ReleaseManifest] = None,
        staging: Optional[ReleaseManifest] = None,
        error: Optional[Exception] = None,
        fail_times: Optional[int] = None,
    ):
        self.release = release
        self.staging = staging
        self.error = error
        self.fail_times = fail_times
        self.release_calls = []
        self.track_calls = []

    async def get_release(self, bucket: RolloutBucket) -> ReleaseManifest:
        self.release_calls.append(bucket)
        if self.error is not None:
            if self.fail_times is None or len(self.release_calls) <= self.fail_times:
                raise self.error
        return self.release

    async def get_track(self, track: str) -> Optional[ReleaseManifest]:
        self.track_calls.append(track)
        return self.staging


class FakeDownloader:
    """从内存中的 URL -> 内容映射"下载"文件"""

    def __init__(self, files: Dict[str, bytes], tmp_dir: Path):
        self.files = dict(files)
        self.tmp_dir = tmp_dir
        self.force_proxy = False
        self.calls = []
        self.proxy_flags = []

    async def download(self, url: str, destination: Path, timeout: float) -> Path:
        self.calls.append(url)
        self.proxy_flags.append(self.force_proxy)
        if url not in self.files:
            raise DownloadNetworkError("HTTP 404", context={"url": url})
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.files[url])
        return destination

    async def download_temp(self, url: str, timeout: float, suffix: str = "") -> Path:
        path = self.tmp_dir / f"download-{len(self.calls)}{suffix}"
        return await self.download(url, path, timeout)


class RecordingSink(ProgressSink):
    def __init__(self):
        self.steps = []
        self.progress = []
        self.visible = None

    def set_step(self, step):
        self.steps.append(step)

    def set_visible(self):
        self.visible = True

    def set_invisible(self):
        self.visible = False

    def report_progress(self, total, downloaded, fraction):
        self.progress.append((total, downloaded, fraction))


class RecordingCache(UniqueIdCache):
    def __init__(self):
        self.resets = 0

    def reset(self):
        self.resets += 1


class FakeAssetManager(AssetManager):
    def __init__(self, version: int = 42, error: Optional[Exception] = None):
        self.version = version
        self.error = error
        self.calls = 0

    async def ensure_assets(self, sink, asset_root):
        self.calls += 1
        if self.error is not None:
            raise self.error
        asset_root.mkdir(parents=True, exist_ok=True)
        return AssetResult(asset_dir=asset_root, version=self.version)


class FakeGameProbe(GameProbe):
    def __init__(self, running: bool = False):
        self.running = running

    def is_game_running(self) -> bool:
        return self.running


@pytest.fixture
def downloads_dir(tmp_path):
    path = tmp_path / "downloads"
    path.mkdir()
    return path


@pytest.fixture
def make_orchestrator(tmp_path):
    def factory(client, downloader, game_running=False, **kwargs):
        kwargs.setdefault("asset_manager", FakeAssetManager())
        kwargs.setdefault("overlay", RecordingSink())
        kwargs.setdefault("uid_cache", RecordingCache())
        return UpdateOrchestrator(
            addon_dir=tmp_path / "addon",
            runtime_dir=tmp_path / "runtime",
            asset_dir=tmp_path / "assets",
            game_probe=FakeGameProbe(game_running),
            rollout_bucket=RolloutBucket.CONTROL,
            manifest_client=client,
            downloader=downloader,
            settle_delay=0,
            **kwargs,
        )

    return factory
