"""Shared fixtures: an in-memory stand-in for a requests session."""

from __future__ import annotations

import threading
import time

import pytest
import requests


class FakeResponse:
    def __init__(self, status_code=200, body="", headers=None, encoding="utf-8", url=None, history=None):
        self.status_code = status_code
        self.url = url
        self.history = list(history or [])
        self.headers = headers if headers is not None else {"Content-Type": "text/html; charset=utf-8"}
        self._body = body.encode(encoding) if isinstance(body, str) else body
        self.encoding = encoding
        self.closed = False

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self._body), chunk_size):
            yield self._body[i:i + chunk_size]

    def close(self):
        self.closed = True


class FakeSession:
    """
    Deterministic transport.

    pages: url -> html string | FakeResponse | Exception (raised on GET)
    heads: url -> list of outcomes (status int, FakeResponse or Exception)
           consumed in order; the last outcome repeats. Unknown URLs answer 200.
    delays: url -> seconds to sleep before answering a GET
    on_get / on_head: called with the URL before answering
    """

    def __init__(self, pages=None, heads=None, delays=None, on_get=None, on_head=None):
        self.headers = {}
        self.pages = dict(pages or {})
        self.heads = dict(heads or {})
        self.delays = dict(delays or {})
        self.on_get = on_get
        self.on_head = on_head
        self.get_calls = []
        self.head_calls = []
        self.get_threads = []
        self._lock = threading.Lock()

    def get(self, url, timeout=None, stream=False, **kwargs):
        with self._lock:
            self.get_calls.append(url)
            self.get_threads.append(threading.current_thread().name)
        if self.on_get is not None:
            self.on_get(url)
        if url in self.delays:
            time.sleep(self.delays[url])
        answer = self.pages.get(url)
        if answer is None:
            return FakeResponse(404, "not found")
        if isinstance(answer, BaseException):
            raise answer
        if isinstance(answer, str):
            return FakeResponse(200, answer)
        return answer

    def head(self, url, timeout=None, allow_redirects=True, **kwargs):
        with self._lock:
            self.head_calls.append(url)
            outcomes = self.heads.get(url, [200])
            outcome = outcomes[min(self.head_calls.count(url), len(outcomes)) - 1]
        if self.on_head is not None:
            self.on_head(url)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, FakeResponse):
            return outcome
        return FakeResponse(outcome, "", url=url)

    def close(self):
        pass


def page(*links, title="Page"):
    """Build a small HTML page; links are hrefs or (href, text) pairs."""
    anchors = []
    for link in links:
        href, text = link if isinstance(link, tuple) else (link, link)
        anchors.append(f'<a href="{href}">{text}</a>')
    return f"<html><head><title>{title}</title></head><body><h1>{title}</h1>{''.join(anchors)}</body></html>"


SITE = "https://example.com"


@pytest.fixture
def small_site():
    """Twelve interlinked pages with broken links, externals and functional links."""
    pages = {
        f"{SITE}/": page("/about", "/blog", "/contact", ("https://github.com/example", "GitHub"),
                         "mailto:hello@example.com"),
        f"{SITE}/about": page("/", "/team", "/missing", "tel:+1 555 0100"),
        f"{SITE}/blog": page("/blog/post-1", "/blog/post-2", "/blog/post-3", "/about/",
                             "https://news.example.org/item"),
        f"{SITE}/blog/post-1": page("/blog", "/blog/post-2", "https://news.example.org/item",
                                    "javascript:void(0)"),
        f"{SITE}/blog/post-2": page("/blog", "/blog/post-3#comments", "/gone"),
        f"{SITE}/blog/post-3": page("/blog", "https://dead.example/", "#top"),
        f"{SITE}/contact": page("/", "mailto:Hello@Example.com?subject=Hi", "/team"),
        f"{SITE}/team": page("/", "/team/alice", "/team/bob", "https://shop.example.com/"),
        f"{SITE}/team/alice": page("/team", "https://github.com/alice"),
        f"{SITE}/team/bob": page("/team", "/team/alice"),
        "https://shop.example.com/": page("/", "/cart"),
        "https://shop.example.com/cart": page("https://example.com/"),
        f"{SITE}/gone": requests.exceptions.ConnectionError("connection reset"),
    }
    return pages
