import contextlib
from datetime import timedelta

import httpx
import pytest
import respx

from rtftpd.errors import HttpStatusError, InternalError
from rtftpd.proxy.cache import GcProperties, get_cache
from rtftpd.proxy.uri import Uri, UriFlags, split_scheme_flags

URL = "http://test.example.com/foo"
DATA = bytes(range(256)) * 4 + b"tail"


@contextlib.asynccontextmanager
async def running_cache(tmp_path):
    cache = get_cache()
    cache.instantiate(
        tmp_path,
        GcProperties(max_elements=50, max_lifetime=timedelta(hours=1), sleep=timedelta(seconds=30)),
    )
    try:
        yield cache
    finally:
        await cache.close()


async def read_all(uri, size=512):
    out = b""
    while not uri.is_eof():
        out += await uri.read(size)
    return out


def test_split_scheme_flags():
    assert split_scheme_flags("https+nocache+nocompress://test.example.com/foo") == (
        "https://test.example.com/foo",
        UriFlags.NO_CACHE | UriFlags.NO_COMPRESS,
    )
    assert split_scheme_flags("https+nocache://test.example.com/foo") == (
        "https://test.example.com/foo",
        UriFlags.NO_CACHE,
    )
    assert split_scheme_flags(URL) == (URL, UriFlags.NONE)
    assert split_scheme_flags("http+bogus://test.example.com/foo") == (URL, UriFlags.NONE)


@pytest.mark.asyncio
async def test_open_and_read(tmp_path):
    with respx.mock(assert_all_called=False) as router:
        route = router.get(URL).mock(return_value=httpx.Response(200, content=DATA))
        async with running_cache(tmp_path) as cache:
            uri = Uri(URL)
            await uri.open()
            assert uri.size() == len(DATA)
            assert await read_all(uri) == DATA
            assert uri.is_eof()
            assert URL in cache.entries
            assert route.call_count == 1
            assert route.calls.last.request.headers.get("accept-encoding") != "identity"


@pytest.mark.asyncio
async def test_http_status_error(tmp_path):
    with respx.mock(assert_all_called=False) as router:
        router.get(URL).mock(return_value=httpx.Response(404))
        async with running_cache(tmp_path) as cache:
            uri = Uri(URL)
            with pytest.raises(HttpStatusError) as info:
                await uri.open()
            assert info.value.status == 404
            assert URL not in cache.entries


@pytest.mark.asyncio
async def test_nocompress_requests_identity(tmp_path):
    with respx.mock(assert_all_called=False) as router:
        route = router.get(URL).mock(return_value=httpx.Response(200, content=DATA))
        async with running_cache(tmp_path):
            uri = Uri("http+nocompress://test.example.com/foo")
            await uri.open()
            assert route.calls.last.request.headers["accept-encoding"] == "identity"
            assert await read_all(uri) == DATA


@pytest.mark.asyncio
async def test_revalidation_uses_cache(tmp_path):
    with respx.mock(assert_all_called=False) as router:
        route = router.get(URL).mock(
            side_effect=[
                httpx.Response(200, content=DATA, headers={"ETag": '"v1"'}),
                httpx.Response(304, headers={"ETag": '"v1"'}),
            ]
        )
        async with running_cache(tmp_path):
            first = Uri(URL)
            await first.open()
            assert await read_all(first) == DATA

            second = Uri(URL)
            await second.open()
            assert route.call_count == 2
            assert route.calls[1].request.headers["if-none-match"] == '"v1"'
            assert second.size() == len(DATA)
            assert await read_all(second, 100) == DATA


@pytest.mark.asyncio
async def test_nocache_fetches_again(tmp_path):
    with respx.mock(assert_all_called=False) as router:
        route = router.get(URL).mock(return_value=httpx.Response(200, content=DATA))
        async with running_cache(tmp_path):
            for _ in range(2):
                uri = Uri("http+nocache://test.example.com/foo")
                await uri.open()
                assert await read_all(uri) == DATA
            assert route.call_count == 2
            assert "if-none-match" not in route.calls.last.request.headers


@pytest.mark.asyncio
async def test_read_errors(tmp_path):
    uri = Uri(URL)
    with pytest.raises(InternalError):
        await uri.read(10)

    with respx.mock(assert_all_called=False) as router:
        router.get(URL).mock(return_value=httpx.Response(200, content=b"abc"))
        async with running_cache(tmp_path):
            uri = Uri(URL)
            await uri.open()
            assert await uri.read(10) == b"abc"
            assert uri.is_eof()
            with pytest.raises(InternalError):
                await uri.read(10)