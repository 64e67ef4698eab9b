import base64
import binascii
import logging
import re
from typing import Optional, Protocol

import httpx
from bs4 import BeautifulSoup

from media import MediaKind, MediaResult, MediaSource

SEARCH_ENDPOINT = "https://www.google.com/search"
SEARCH_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "zh-TW,zh;q=0.9,en-US;q=0.8,en;q=0.7",
}
DOWNLOAD_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    ),
}
MAX_CANDIDATES = 10

_JSON_ARRAY_RE = re.compile(r'\["(https?://[^"]+\.(?:jpg|jpeg|png|gif)[^"]*)"\s*,\s*\d+\s*,\s*\d+\]', re.IGNORECASE)
_QUOTED_URL_RE = re.compile(r'"(https?://[^"]+\.(?:jpg|jpeg|png|gif)[^"]*)"', re.IGNORECASE)
_GIF_URL_RE = re.compile(r"\.gif(?:$|[?#&/])", re.IGNORECASE)
_BLOCKED = ("encrypted-tbn", "gstatic", "googlelogo")


class FetchError(Exception):
    pass


class SearchError(Exception):
    pass


class NoResult(SearchError):
    pass


class FetchFailed(SearchError):
    pass


class ParseFailed(SearchError):
    pass


class PageFetcher(Protocol):
    async def fetch(self, url: str, params: Optional[dict] = None, headers: Optional[dict] = None) -> str:
        ...

    async def download(self, url: str, headers: Optional[dict] = None) -> bytes:
        ...


class HttpxPageFetcher:
    def __init__(self, timeout: float = 15.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def _get(self, url: str, params: Optional[dict], headers: Optional[dict]) -> httpx.Response:
        try:
            resp = await self._client.get(url, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise FetchError(f"{type(e).__name__}: {e}") from e
        if not resp.is_success:
            raise FetchError(f"HTTP {resp.status_code} for {resp.url}")
        return resp

    async def fetch(self, url: str, params: Optional[dict] = None, headers: Optional[dict] = None) -> str:
        resp = await self._get(url, params, headers)
        logging.info("search: received %s, %s bytes", resp.status_code, len(resp.content))
        return resp.content.decode("utf-8", errors="replace")

    async def download(self, url: str, headers: Optional[dict] = None) -> bytes:
        resp = await self._get(url, None, headers)
        return resp.content

    async def aclose(self) -> None:
        await self._client.aclose()


def _clean_url(raw: str) -> Optional[str]:
    if any(b in raw for b in _BLOCKED):
        return None
    return raw.replace("\\u0026", "&").replace("\\u003d", "=").replace("\\u003D", "=")


def _collect(pattern: re.Pattern, html: str) -> list[str]:
    urls = []
    for m in pattern.finditer(html):
        if len(urls) >= MAX_CANDIDATES:
            break
        url = _clean_url(m.group(1))
        if url:
            urls.append(url)
    return urls


def _collect_markup(soup: BeautifulSoup) -> list[str]:
    urls = []
    for tag in soup.find_all(attrs={"data-ou": True}):
        urls.append(tag["data-ou"])
        if len(urls) >= MAX_CANDIDATES:
            return urls
    if urls:
        return urls
    for img in soup.find_all("img", src=True):
        if img.get("alt") == "Google":
            continue
        src = img["src"]
        if src.startswith("data:image/"):
            urls.append(src)
        elif src.startswith(("http://", "https://")):
            url = _clean_url(src)
            if url:
                urls.append(url)
        if len(urls) >= MAX_CANDIDATES:
            break
    return urls


def extract_image_urls(html: str) -> list[str]:
    """Pull candidate image URLs out of a Google image search page, in document order.

    Tries, in turn: the ``["url", w, h]`` arrays of the script payload, any
    quoted image URL inside scripts, then ``data-ou`` attributes and
    ``<img src>`` values. Raises ParseFailed if the page has no scripts,
    images or ``data-ou`` markup at all.
    """
    soup = BeautifulSoup(html, "html.parser")
    scripts = [s.string or "" for s in soup.find_all("script")]
    if not scripts and soup.find("img") is None and soup.find(attrs={"data-ou": True}) is None:
        raise ParseFailed("response is not a search result page")
    payload = "\n".join(scripts)
    urls = _collect(_JSON_ARRAY_RE, payload)
    if urls:
        logging.debug("search: %s urls from script arrays", len(urls))
        return urls
    urls = _collect(_QUOTED_URL_RE, payload)
    if urls:
        logging.debug("search: %s urls from quoted strings", len(urls))
        return urls
    urls = _collect_markup(soup)
    logging.debug("search: %s urls from markup", len(urls))
    return urls


_STATIC_DATA_PREFIXES = ("data:image/jpeg", "data:image/jpg", "data:image/png")


def _is_gif_url(url: str) -> bool:
    if url.startswith("data:"):
        return url.startswith("data:image/gif")
    return bool(_GIF_URL_RE.search(url))


def matches_kind(url: str, kind: MediaKind) -> bool:
    if kind is MediaKind.ANIMATION:
        return _is_gif_url(url)
    if url.startswith("data:"):
        return url.startswith(_STATIC_DATA_PREFIXES)
    return not _is_gif_url(url)


def filter_for_kind(urls: list[str], kind: MediaKind) -> list[str]:
    """Keep only the candidates that can be sent as ``kind``, in document order."""
    return [u for u in urls if matches_kind(u, kind)]


def decode_data_uri(uri: str) -> Optional[bytes]:
    head, sep, data = uri.partition(",")
    if not sep or ";base64" not in head:
        return None
    try:
        return base64.b64decode(data, validate=False)
    except (binascii.Error, ValueError):
        return None


def is_imgur_url(url: str) -> bool:
    return "imgur.com" in url


class ImageSearchResolver:
    def __init__(self, fetcher: PageFetcher, language: str = "zh-TW") -> None:
        self.fetcher = fetcher
        self.language = language

    def build_params(self, base_name: str, kind: MediaKind) -> dict:
        return {
            "q": base_name,
            "tbs": "ift:gif" if kind is MediaKind.ANIMATION else "ift:jpg",
            "tbm": "isch",
            "hl": self.language,
        }

    async def resolve_remote(self, base_name: str, kind: MediaKind) -> MediaResult:
        logging.info("search: query=%r kind=%s", base_name, kind.value)
        try:
            html = await self.fetcher.fetch(SEARCH_ENDPOINT, params=self.build_params(base_name, kind), headers=SEARCH_HEADERS)
        except FetchError as e:
            raise FetchFailed(str(e)) from e
        try:
            urls = extract_image_urls(html)
        except ParseFailed:
            logging.debug("search: html sample: %s", html[:2000])
            raise
        if not urls:
            raise NoResult(f"no image urls for {base_name!r}")
        candidates = filter_for_kind(urls, kind)
        if not candidates:
            raise NoResult(f"no {kind.value} urls for {base_name!r} among {len(urls)} results")
        for url in candidates:
            if url.startswith("data:"):
                data = decode_data_uri(url)
                if data is None:
                    logging.info("search: skipping undecodable data uri")
                    continue
                return MediaResult(source=MediaSource.REMOTE_SEARCH, kind=kind, payload=data)
            if is_imgur_url(url):
                # Telegram cannot fetch imgur links itself, so hand it the bytes
                try:
                    data = await self.fetcher.download(url, headers=DOWNLOAD_HEADERS)
                except FetchError as e:
                    raise FetchFailed(f"imgur download failed: {e}") from e
                return MediaResult(source=MediaSource.REMOTE_SEARCH, kind=kind, payload=data)
            logging.info("search: first result for %r: %s", base_name, url)
            return MediaResult(source=MediaSource.REMOTE_SEARCH, kind=kind, payload=url)
        raise NoResult(f"no usable image urls for {base_name!r}")
