import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from hooksync.download import Downloader
from hooksync.exceptions import DownloadNetworkError, DownloadTimeoutError

BODY = bytes(range(256)) * 1024


def make_app():
    async def direct(request):
        return web.Response(body=BODY)

    async def proxied(request):
        return web.Response(body=b"via-proxy")

    async def chunked(request):
        response = web.StreamResponse()
        response.enable_chunked_encoding()
        await response.prepare(request)
        for _ in range(4):
            await response.write(b"x" * 1000)
        await response.write_eof()
        return response

    async def missing(request):
        return web.Response(status=404)

    async def slow(request):
        await asyncio.sleep(1.0)
        return web.Response(body=b"late")

    app = web.Application()
    app.router.add_get("/File/Get/payload.zip", direct)
    app.router.add_get("/File/GetProxy/payload.zip", proxied)
    app.router.add_get("/chunked.bin", chunked)
    app.router.add_get("/missing.zip", missing)
    app.router.add_get("/slow.zip", slow)
    return app


@pytest.mark.asyncio
async def test_download_reports_monotonic_progress(tmp_path):
    progress = []
    downloader = Downloader(
        progress_callback=lambda *args: progress.append(args), chunk_size=4096
    )

    async with TestServer(make_app()) as server:
        url = str(server.make_url("/File/Get/payload.zip"))
        path = await downloader.download(url, tmp_path / "payload.zip", timeout=10)

    assert path.read_bytes() == BODY
    assert progress
    downloaded = [item[1] for item in progress]
    assert downloaded == sorted(downloaded)
    assert progress[-1] == (len(BODY), len(BODY), 1.0)
    assert downloader.stats.completed == 1


@pytest.mark.asyncio
async def test_download_without_length_has_no_fraction(tmp_path):
    progress = []
    downloader = Downloader(progress_callback=lambda *args: progress.append(args))

    async with TestServer(make_app()) as server:
        url = str(server.make_url("/chunked.bin"))
        path = await downloader.download(url, tmp_path / "chunked.bin", timeout=10)

    assert path.stat().st_size == 4000
    assert all(total is None and fraction is None for total, _, fraction in progress)


@pytest.mark.asyncio
async def test_force_proxy_rewrites_url(tmp_path):
    downloader = Downloader(force_proxy=True)

    async with TestServer(make_app()) as server:
        url = str(server.make_url("/File/Get/payload.zip"))
        path = await downloader.download(url, tmp_path / "payload.zip", timeout=10)

    assert path.read_bytes() == b"via-proxy"


def test_rewrite_url_leaves_other_urls():
    downloader = Downloader(force_proxy=True)
    assert downloader.rewrite_url("https://host/pkg.nupkg") == "https://host/pkg.nupkg"
    downloader.force_proxy = False
    assert downloader.rewrite_url("https://host/File/Get/a") == "https://host/File/Get/a"


@pytest.mark.asyncio
async def test_http_error_discards_partial_file(tmp_path):
    downloader = Downloader()
    destination = tmp_path / "missing.zip"
    destination.write_bytes(b"partial")

    async with TestServer(make_app()) as server:
        url = str(server.make_url("/missing.zip"))
        with pytest.raises(DownloadNetworkError) as exc_info:
            await downloader.download(url, destination, timeout=10)

    assert exc_info.value.context["status"] == 404
    assert not destination.exists()
    assert downloader.stats.failed == 1


@pytest.mark.asyncio
async def test_timeout_raises(tmp_path):
    downloader = Downloader()

    async with TestServer(make_app()) as server:
        url = str(server.make_url("/slow.zip"))
        with pytest.raises(DownloadTimeoutError):
            await downloader.download(url, tmp_path / "slow.zip", timeout=0.2)


@pytest.mark.asyncio
async def test_unreachable_host_raises_network_error(tmp_path):
    server = TestServer(make_app())
    await server.start_server()
    url = str(server.make_url("/File/Get/payload.zip"))
    await server.close()

    with pytest.raises(DownloadNetworkError):
        await Downloader().download(url, tmp_path / "payload.zip", timeout=5)


@pytest.mark.asyncio
async def test_download_temp(tmp_path):
    downloader = Downloader()

    async with TestServer(make_app()) as server:
        url = str(server.make_url("/File/Get/payload.zip"))
        path = await downloader.download_temp(url, timeout=10, suffix=".zip")

    try:
        assert path.suffix == ".zip"
        assert path.read_bytes() == BODY
    finally:
        path.unlink()
