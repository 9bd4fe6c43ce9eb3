"""Small urllib helpers shared by the network-backed tokens and tools."""

from __future__ import annotations

import html
import json
import re
import urllib.error
import urllib.parse
import urllib.request
from html.parser import HTMLParser
from typing import Any, Dict, List, Optional

from .errors import BackendError

USER_AGENT = "cogshell/0.1 (+local)"
DEFAULT_TIMEOUT_S = 15.0


class _TextOnlyHTMLParser(HTMLParser):
    _SKIP = {"script", "style", "noscript", "head"}

    def __init__(self) -> None:
        super().__init__()
        self._chunks: List[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: Any) -> None:
        if tag in self._SKIP:
            self._skip_depth += 1

    def handle_endtag(self, tag: str) -> None:
        if tag in self._SKIP and self._skip_depth:
            self._skip_depth -= 1

    def handle_data(self, data: str) -> None:
        if data and not self._skip_depth:
            self._chunks.append(data)

    def text(self) -> str:
        return " ".join(self._chunks)


def strip_html(s: str) -> str:
    if not s:
        return ""
    p = _TextOnlyHTMLParser()
    try:
        p.feed(s)
        p.close()
        out = p.text()
    except (AssertionError, ValueError):
        out = re.sub(r"<[^>]+>", " ", s)
    out = html.unescape(out)
    return re.sub(r"\s+", " ", out).strip()


def http_get(url: str, *, params: Optional[Dict[str, Any]] = None, timeout_s: float = DEFAULT_TIMEOUT_S) -> str:
    """GET `url` and return the decoded body; network problems surface as `BackendError`."""
    if params:
        url = url + ("&" if "?" in url else "?") + urllib.parse.urlencode(params)
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"Only http(s) URLs are supported: {url!r}")
    req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    try:
        with urllib.request.urlopen(req, timeout=float(timeout_s)) as r:  # noqa: S310
            charset = r.headers.get_content_charset() or "utf-8"
            return r.read().decode(charset, errors="replace")
    except urllib.error.HTTPError as e:
        raise BackendError(f"HTTP {e.code} from {parsed.netloc}") from e
    except (urllib.error.URLError, OSError) as e:
        raise BackendError(f"request to {parsed.netloc} failed: {e}") from e


def http_get_json(url: str, *, params: Optional[Dict[str, Any]] = None, timeout_s: float = DEFAULT_TIMEOUT_S) -> Any:
    raw = http_get(url, params=params, timeout_s=timeout_s)
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise BackendError(f"non-JSON response from {urllib.parse.urlparse(url).netloc}") from e


def normalize_url(text: str) -> str:
    u = (text or "").strip().strip("'\"<>")
    if u and "://" not in u:
        u = "https://" + u
    return u


def _ddg_unwrap_url(href: str) -> str:
    href = (href or "").strip()
    if href.startswith("//"):
        href = "https:" + href
    if href.startswith("/l/"):
        qs = urllib.parse.parse_qs(urllib.parse.urlparse("https://duckduckgo.com" + href).query)
        if qs.get("uddg"):
            return urllib.parse.unquote(qs["uddg"][0])
    if href.startswith("/"):
        return "https://duckduckgo.com" + href
    return href


_DDG_LINK = re.compile(r'<a[^>]+class="result-link"[^>]+href="([^"]+)"[^>]*>(.*?)</a>', re.I | re.S)
_DDG_SNIPPET = re.compile(r'<td[^>]+class="result-snippet"[^>]*>(.*?)</td>', re.I | re.S)


def duckduckgo_search(query: str, *, k: int = 5, timeout_s: float = DEFAULT_TIMEOUT_S) -> List[Dict[str, str]]:
    """Scrape DuckDuckGo Lite; returns `[{title, url, snippet}]`."""
    q = (query or "").strip()
    if not q:
        return []
    page = http_get("https://lite.duckduckgo.com/lite/", params={"q": q}, timeout_s=timeout_s)
    links = list(_DDG_LINK.finditer(page))
    out: List[Dict[str, str]] = []
    for i, m in enumerate(links):
        url = _ddg_unwrap_url(m.group(1))
        title = strip_html(m.group(2))
        if not url or not title:
            continue
        end = links[i + 1].start() if i + 1 < len(links) else min(len(page), m.end() + 6000)
        sm = _DDG_SNIPPET.search(page, m.end(), end)
        out.append({"title": title, "url": url, "snippet": strip_html(sm.group(1)) if sm else ""})
        if len(out) >= int(k):
            break
    return out
