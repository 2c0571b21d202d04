import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from hooksync.exceptions import ManifestError
from hooksync.models import RolloutBucket
from hooksync.services import ManifestClient, VersionResolver

RELEASE = {
    "AssemblyVersion": "9.1.0.0",
    "SupportedGameVer": "2024.06.18.0000.0000",
    "RuntimeVersion": "8.0.1",
    "RuntimeRequired": True,
    "Key": None,
    "DownloadUrl": "https://example.invalid/File/Get/release.zip",
}

STAGING = dict(RELEASE, AssemblyVersion="9.2.0.0", Key="secret")

TRACK_BODIES = {
    "empty-null": "null",
    "empty-object": "{}",
    "keyless": json.dumps({"Key": None}),
    "other-key": json.dumps(dict(STAGING, Key="other")),
    "blank": "",
}


def make_app(seen):
    async def version_info(request):
        seen.append(
            (
                dict(request.query),
                request.headers.get("Cache-Control"),
            )
        )
        track = request.query.get("track")
        if track == "release":
            return web.Response(text=json.dumps(RELEASE))
        if track == "staging":
            return web.Response(text=json.dumps(STAGING))
        if track in TRACK_BODIES:
            return web.Response(text=TRACK_BODIES[track])
        if track == "broken":
            return web.Response(status=500)
        return web.Response(status=400)

    app = web.Application()
    app.router.add_get("/VersionInfo", version_info)
    return app


def client_for(server) -> ManifestClient:
    return ManifestClient(str(server.make_url("/VersionInfo")) + "?track=", timeout=10)


@pytest.mark.asyncio
async def test_get_release_sends_bucket():
    seen = []
    async with TestServer(make_app(seen)) as server:
        manifest = await client_for(server).get_release(RolloutBucket.CANARY)

    assert manifest.assembly_version == "9.1.0.0"
    assert manifest.runtime_required is True
    query, cache_control = seen[0]
    assert query == {"track": "release", "bucket": "Canary"}
    assert cache_control == "no-cache"


@pytest.mark.asyncio
async def test_get_track():
    async with TestServer(make_app([])) as server:
        manifest = await client_for(server).get_track("staging")

    assert manifest.assembly_version == "9.2.0.0"
    assert manifest.rollout_key == "secret"


@pytest.mark.asyncio
async def test_unknown_track_is_none():
    async with TestServer(make_app([])) as server:
        assert await client_for(server).get_track("nonexistent") is None


@pytest.mark.asyncio
async def test_server_error_raises():
    async with TestServer(make_app([])) as server:
        with pytest.raises(ManifestError) as exc_info:
            await client_for(server).get_track("broken")

    assert exc_info.value.context["status_code"] == 500


@pytest.mark.asyncio
@pytest.mark.parametrize("track", ["empty-null", "empty-object", "keyless", "blank"])
async def test_unusable_track_is_none(track):
    async with TestServer(make_app([])) as server:
        assert await client_for(server).get_track(track) is None


@pytest.mark.asyncio
async def test_malformed_track_json_raises():
    async def garbage(request):
        return web.Response(text="<html>")

    app = web.Application()
    app.router.add_get("/VersionInfo", garbage)
    async with TestServer(app) as server:
        with pytest.raises(ManifestError):
            await client_for(server).get_track("staging")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "track", ["empty-null", "empty-object", "keyless", "other-key", "blank"]
)
async def test_resolver_falls_back_to_release(track):
    """测试通道没有可用清单或密钥不匹配时使用正式版"""
    async with TestServer(make_app([])) as server:
        resolver = VersionResolver(client_for(server), RolloutBucket.CONTROL)
        resolution = await resolver.resolve(track, "secret")

    assert resolution.is_staging is False
    assert resolution.manifest.assembly_version == "9.1.0.0"


@pytest.mark.asyncio
async def test_resolver_uses_matching_track():
    async with TestServer(make_app([])) as server:
        resolver = VersionResolver(client_for(server), RolloutBucket.CONTROL)
        resolution = await resolver.resolve(None, "secret")

    assert resolution.is_staging is True
    assert resolution.manifest.assembly_version == "9.2.0.0"
