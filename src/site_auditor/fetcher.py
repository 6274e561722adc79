"""
Web Page Fetcher Module

This module handles every HTTP request made during an audit:
- Full-body page fetches for the internal crawl (size capped, single attempt)
- Lightweight existence checks (HEAD) for external links
- Timeout / connection failure classification
- Retry handling for transient external-check failures
- Redirect chains (hops, final URL, loops) of external checks

Internal page fetches carry no timeout unless one is configured, while every
external check is bounded by its own timeout.
"""

import logging
import time

import requests
from requests.exceptions import RequestException, Timeout, TooManyRedirects

logger = logging.getLogger("fetcher")

TIMEOUT = "TIMEOUT"
FETCH_ERROR = "FETCH_ERROR"
TRANSIENT_RESULTS = (TIMEOUT, FETCH_ERROR)


def redirect_chain(resp, url: str):
    """
    Describe the redirects a response went through.

    Args:
        resp: Final response (or the last one seen before giving up)
        url (str): URL that was requested

    Returns:
        dict or None: {chain: [{url, status}, ...], finalUrl, redirectCount, hasLoop},
        or None when the URL answered without redirecting
    """
    history = list(getattr(resp, "history", None) or [])
    if not history:
        return None
    hops = [{"url": r.url, "status": r.status_code} for r in history]
    final_url = getattr(resp, "url", None) or url
    hops.append({"url": final_url, "status": resp.status_code})
    seen = [hop["url"] for hop in hops]
    return {
        "chain": hops,
        "finalUrl": final_url,
        "redirectCount": len(history),
        "hasLoop": len(set(seen)) < len(seen),
    }


class Fetcher:
    """
    HTTP client used by both crawl phases.

    This class wraps a requests session with:
    - A crawler User-Agent header
    - Streaming page reads with a hard size cap
    - HEAD based link checks classified as status / TIMEOUT / FETCH_ERROR
    - Retries for transient link-check failures only
    """

    def __init__(self, user_agent: str, page_timeout=None, link_timeout: float = 5.0,
                 retries: int = 2, retry_delay: float = 0.0,
                 max_page_bytes: int = 10 * 1024 * 1024, session=None):
        """
        Initialize the fetcher with the specified configuration.

        Args:
            user_agent (str): User agent string to identify the auditor
            page_timeout (float, optional): Timeout for page fetches; None means no guard
            link_timeout (float): Timeout in seconds for each external check
            retries (int): Extra attempts for TIMEOUT / FETCH_ERROR link checks
            retry_delay (float): Base delay between link-check attempts (linear backoff)
            max_page_bytes (int): Page bodies are truncated past this size
            session (requests.Session, optional): Session to use (tests inject a fake one)
        """
        self.user_agent = user_agent
        self.page_timeout = page_timeout
        self.link_timeout = link_timeout
        self.retries = max(0, int(retries))
        self.retry_delay = max(0.0, float(retry_delay))
        self.max_page_bytes = max_page_bytes

        self._owns_session = session is None
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({"User-Agent": self.user_agent})

    def _read_body(self, resp, url: str) -> bytes:
        chunks = []
        size = 0
        for chunk in resp.iter_content(chunk_size=64 * 1024):
            if not chunk:
                continue
            chunks.append(chunk)
            size += len(chunk)
            if size > self.max_page_bytes:
                logger.warning(f"Page exceeds {self.max_page_bytes} bytes, truncating: {url}")
                break
        return b"".join(chunks)[:self.max_page_bytes]

    def fetch(self, url: str):
        """
        Fetch a page once.

        Args:
            url (str): The URL to fetch

        Returns:
            tuple: (
                status_code: int or None,
                headers: dict,
                text: str,
                elapsed_time: float,
                error: str or None
            )
        """
        start = time.time()
        logger.debug(f"Fetching {url}")
        try:
            resp = self.session.get(url, timeout=self.page_timeout, stream=True)
            try:
                status = resp.status_code
                headers = dict(resp.headers or {})
                body = b""
                if 200 <= status < 300:
                    body = self._read_body(resp, url)
                encoding = resp.encoding or "utf-8"
            finally:
                resp.close()
            try:
                text = body.decode(encoding, errors="replace")
            except LookupError:
                text = body.decode("utf-8", errors="replace")
            return status, headers, text, time.time() - start, None
        except RequestException as e:
            logger.debug(f"Fetch failed for {url}: {e}")
            return None, {}, "", time.time() - start, str(e) or e.__class__.__name__

    def _head(self, url: str):
        try:
            resp = self.session.head(url, timeout=self.link_timeout, allow_redirects=True)
            try:
                return int(resp.status_code), redirect_chain(resp, url)
            finally:
                resp.close()
        except Timeout:
            return TIMEOUT, None
        except TooManyRedirects as e:
            logger.debug(f"Too many redirects for {url}")
            resp = getattr(e, "response", None)
            return FETCH_ERROR, redirect_chain(resp, url) if resp is not None else None
        except RequestException as e:
            logger.debug(f"Check failed for {url}: {e}")
            return FETCH_ERROR, None

    def check_link(self, url: str):
        """
        Run one existence check against a URL.

        Returns:
            int or str: HTTP status code, TIMEOUT or FETCH_ERROR
        """
        return self._head(url)[0]

    def check_link_with_retry(self, url: str):
        """
        Check a URL, retrying only transient failures.

        A definitive HTTP status (including 404 or 500) is conclusive and is
        returned at once. TIMEOUT / FETCH_ERROR are retried up to `retries`
        extra times; the last outcome is returned whatever it is.

        Returns:
            tuple: (result, attempts, redirects) where redirects is the
            redirect_chain() of the last attempt
        """
        result, redirects = FETCH_ERROR, None
        attempts = 0
        for attempt in range(1, self.retries + 2):
            attempts = attempt
            result, redirects = self._head(url)
            if result not in TRANSIENT_RESULTS:
                break
            if attempt <= self.retries:
                logger.debug(f"Attempt {attempt} for {url} gave {result}, retrying")
                if self.retry_delay:
                    time.sleep(self.retry_delay * attempt)
        return result, attempts, redirects

    def close(self):
        if self._owns_session:
            self.session.close()
