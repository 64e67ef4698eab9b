import base64

import httpx
import pytest

from image_search import (
    SEARCH_ENDPOINT,
    FetchError,
    FetchFailed,
    HttpxPageFetcher,
    ImageSearchResolver,
    NoResult,
    ParseFailed,
    extract_image_urls,
    filter_for_kind,
)
from media import MediaKind, MediaSource

from .fakes import FakeFetcher

SCRIPT_PAGE = """<html><body><script>
AF_initDataCallback({data:[["https://encrypted-tbn0.gstatic.com/images?q=tbn",300,200],
["https://example.com/cats/one.jpg?size=big\\u0026x=1",800,600],
["https://example.org/two.png",640,480]]});
</script></body></html>"""

QUOTED_PAGE = """<html><body><script>var a = "https://cdn.example.net/anim.gif"; var b = "https://cdn.example.net/still.jpg";</script></body></html>"""

MARKUP_PAGE = """<html><body>
<img alt="Google" src="https://www.google.com/logo.png">
<div data-ou="https://img.example.com/full.jpg"></div>
</body></html>"""

IMG_ONLY_PAGE = """<html><body>
<img alt="Google" src="https://www.google.com/logo.png">
<img class="islir" src="data:image/jpeg;base64,{data}">
</body></html>""".format(data=base64.b64encode(b"\xff\xd8\xffjpeg").decode())

EMPTY_RESULTS_PAGE = "<html><body><script>var nothing = 1;</script></body></html>"


def test_extracts_script_arrays_in_order() -> None:
    assert extract_image_urls(SCRIPT_PAGE) == [
        "https://example.com/cats/one.jpg?size=big&x=1",
        "https://example.org/two.png",
    ]


def test_falls_back_to_quoted_urls() -> None:
    assert extract_image_urls(QUOTED_PAGE) == [
        "https://cdn.example.net/anim.gif",
        "https://cdn.example.net/still.jpg",
    ]


def test_falls_back_to_markup() -> None:
    assert extract_image_urls(MARKUP_PAGE) == ["https://img.example.com/full.jpg"]


def test_empty_result_page_has_no_urls() -> None:
    assert extract_image_urls(EMPTY_RESULTS_PAGE) == []


@pytest.mark.parametrize("html", ["", "just some text", '{"error": "rate limited"}'])
def test_unexpected_page_is_parse_failure(html) -> None:
    with pytest.raises(ParseFailed):
        extract_image_urls(html)


def test_filter_for_kind_keeps_only_matching_urls() -> None:
    urls = ["https://a/x.jpg", "https://a/y.gif?w=1", "https://a/z.png", "data:image/gif;base64,R0lG", "data:image/webp;base64,UklG"]
    assert filter_for_kind(urls, MediaKind.ANIMATION) == ["https://a/y.gif?w=1", "data:image/gif;base64,R0lG"]
    assert filter_for_kind(urls, MediaKind.STATIC_IMAGE) == ["https://a/x.jpg", "https://a/z.png"]


@pytest.mark.anyio
async def test_animation_request_without_gif_urls_is_no_result() -> None:
    page = '<html><body><script>var b = "https://cdn.example.net/still.jpg";</script></body></html>'
    with pytest.raises(NoResult):
        await ImageSearchResolver(FakeFetcher(html=page)).resolve_remote("spin", MediaKind.ANIMATION)


@pytest.mark.anyio
async def test_static_request_skips_gif_data_uri() -> None:
    gif = base64.b64encode(b"GIF89a").decode()
    page = f'<html><body><img src="data:image/gif;base64,{gif}"></body></html>'
    with pytest.raises(NoResult):
        await ImageSearchResolver(FakeFetcher(html=page)).resolve_remote("x", MediaKind.STATIC_IMAGE)


@pytest.mark.anyio
async def test_resolve_remote_returns_first_url() -> None:
    fetcher = FakeFetcher(html=SCRIPT_PAGE)
    res = await ImageSearchResolver(fetcher, language="en").resolve_remote("cats", MediaKind.STATIC_IMAGE)

    assert res.source is MediaSource.REMOTE_SEARCH
    assert res.kind is MediaKind.STATIC_IMAGE
    assert res.payload == "https://example.com/cats/one.jpg?size=big&x=1"
    assert len(fetcher.fetch_calls) == 1
    call = fetcher.fetch_calls[0]
    assert call["url"] == SEARCH_ENDPOINT
    assert call["params"] == {"q": "cats", "tbs": "ift:jpg", "tbm": "isch", "hl": "en"}


@pytest.mark.anyio
async def test_animation_query_uses_gif_filter() -> None:
    fetcher = FakeFetcher(html=QUOTED_PAGE)
    res = await ImageSearchResolver(fetcher).resolve_remote("spin", MediaKind.ANIMATION)
    assert res.payload == "https://cdn.example.net/anim.gif"
    assert fetcher.fetch_calls[0]["params"]["tbs"] == "ift:gif"


@pytest.mark.anyio
async def test_data_uri_is_decoded() -> None:
    res = await ImageSearchResolver(FakeFetcher(html=IMG_ONLY_PAGE)).resolve_remote("x", MediaKind.STATIC_IMAGE)
    assert res.payload == b"\xff\xd8\xffjpeg"


@pytest.mark.anyio
async def test_imgur_urls_are_downloaded() -> None:
    page = '<html><body><script>x = "https://i.imgur.com/abc.jpg";</script></body></html>'
    fetcher = FakeFetcher(html=page, downloads={"https://i.imgur.com/abc.jpg": b"imgurbytes"})
    res = await ImageSearchResolver(fetcher).resolve_remote("abc", MediaKind.STATIC_IMAGE)
    assert res.payload == b"imgurbytes"
    assert fetcher.download_calls == ["https://i.imgur.com/abc.jpg"]


@pytest.mark.anyio
async def test_imgur_download_failure_is_fetch_failed() -> None:
    page = '<html><body><script>x = "https://i.imgur.com/gone.jpg";</script></body></html>'
    with pytest.raises(FetchFailed):
        await ImageSearchResolver(FakeFetcher(html=page)).resolve_remote("gone", MediaKind.STATIC_IMAGE)


@pytest.mark.anyio
async def test_fetch_error_maps_to_fetch_failed() -> None:
    fetcher = FakeFetcher(error=FetchError("HTTP 503"))
    with pytest.raises(FetchFailed):
        await ImageSearchResolver(fetcher).resolve_remote("x", MediaKind.STATIC_IMAGE)


@pytest.mark.anyio
async def test_no_urls_is_no_result() -> None:
    with pytest.raises(NoResult):
        await ImageSearchResolver(FakeFetcher(html=EMPTY_RESULTS_PAGE)).resolve_remote("x", MediaKind.STATIC_IMAGE)


@pytest.mark.anyio
async def test_garbage_page_is_parse_failed() -> None:
    with pytest.raises(ParseFailed):
        await ImageSearchResolver(FakeFetcher(html="oops")).resolve_remote("x", MediaKind.STATIC_IMAGE)


@pytest.mark.anyio
async def test_httpx_fetcher_maps_status_and_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/ok":
            assert request.url.params["q"] == "cats"
            return httpx.Response(200, text="<html>ok</html>")
        if request.url.path == "/boom":
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(429, text="slow down")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = HttpxPageFetcher(client=client)
    try:
        assert await fetcher.fetch("https://search.test/ok", params={"q": "cats"}) == "<html>ok</html>"
        with pytest.raises(FetchError):
            await fetcher.fetch("https://search.test/limited")
        with pytest.raises(FetchError):
            await fetcher.download("https://search.test/boom")
    finally:
        await fetcher.aclose()
