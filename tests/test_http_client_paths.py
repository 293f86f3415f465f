import httpx
import pytest

from origin_alpaca.origin.http_client import OriginHttpClient


def test_build_image_url_prefixes_image_path():
    client = OriginHttpClient("192.168.1.1")
    url = client.build_image_url("Images/Temp/0.jpg")
    assert url == "http://192.168.1.1/SmartScope-1.0/dev2/Images/Temp/0.jpg"


def test_build_image_url_strips_leading_slash():
    client = OriginHttpClient("192.168.1.1")
    url = client.build_image_url("/Images/Astrophotography/frame.tiff")
    assert url == "http://192.168.1.1/SmartScope-1.0/dev2/Images/Astrophotography/frame.tiff"


def test_empty_path_is_rejected():
    client = OriginHttpClient("192.168.1.1")
    with pytest.raises(ValueError):
        client.build_image_url("  ")


@pytest.mark.asyncio
async def test_fetch_image_sends_no_cache_headers():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, content=b"jpeg-bytes")

    async with OriginHttpClient("10.0.0.7", transport=httpx.MockTransport(handler)) as client:
        content = await client.fetch_image("Images/Temp/1.jpg")

    assert content == b"jpeg-bytes"
    assert str(requests[0].url) == "http://10.0.0.7/SmartScope-1.0/dev2/Images/Temp/1.jpg"
    assert requests[0].headers["Cache-Control"] == "no-cache"
    assert requests[0].headers["Accept"] == "*/*"


@pytest.mark.asyncio
async def test_fetch_image_raises_on_http_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(404))
    client = OriginHttpClient("10.0.0.7", transport=transport)
    try:
        with pytest.raises(httpx.HTTPStatusError):
            await client.fetch_image("Images/Temp/missing.jpg")
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_set_host_rebuilds_base_url():
    client = OriginHttpClient("10.0.0.7")
    await client.set_host("10.0.0.8")
    assert client.base_url == "http://10.0.0.8"
