"""
External Link Verification Module

Runs after the internal crawl. Every external URL discovered during the crawl
is checked exactly once by a fixed pool of worker threads, whatever the number
of pages that referenced it; every referrer is kept on the resulting record.
"""

import concurrent.futures as cf
import logging
import threading

from tqdm import tqdm

logger = logging.getLogger("external")


class ExternalLinkChecker:
    """
    Verification pool for the external links pending on a CrawlState.

    Each worker pulls the next (url, referrers) entry from a shared iterator
    built once from the pending set; no new links are discovered here.
    """

    def __init__(self, state, fetcher, state_store=None, workers: int = 10,
                 show_progress: bool = False):
        self.state = state
        self.fetcher = fetcher
        self.state_store = state_store
        self.workers = max(1, int(workers))
        self.show_progress = show_progress
        self._lock = threading.Lock()
        self.checked = 0
        self.attempts = 0
        self.stop_flag = False

    def stop(self):
        """Stop taking new links; checks already running still complete."""
        with self._lock:
            self.stop_flag = True

    def _work_items(self):
        return list(self.state.pending_external_by_url().items())

    def _check(self, url: str, sources: set):
        result, attempts, redirects = self.fetcher.check_link_with_retry(url)
        with self._lock:
            self.state.record_external(url, result, sources, redirects)
            self.state.pending_external.difference_update((url, s) for s in sources)
            self.checked += 1
            self.attempts += attempts
        if redirects and redirects["hasLoop"]:
            logger.info(f"Redirect loop at {url} after {redirects['redirectCount']} hop(s)")
        if not isinstance(result, int) or result >= 400:
            logger.info(f"{result} {url} ({len(sources)} referrer(s), {attempts} attempt(s))")
        return result

    def _worker(self, cursor, pbar):
        while True:
            with self._lock:
                item = None if self.stop_flag else next(cursor, None)
            if item is None:
                return
            url, sources = item
            try:
                self._check(url, sources)
            except Exception:
                logger.exception(f"external check crashed for {url}")
            pbar.update(1)

    def run(self) -> dict:
        items = self._work_items()
        if not items:
            logger.info("No external links to check.")
        else:
            logger.info(f"Checking {len(items)} external link(s) with {self.workers} workers")
            cursor = iter(items)
            pbar = tqdm(total=len(items), desc="External", unit="link", ncols=90,
                        disable=not self.show_progress)
            try:
                with cf.ThreadPoolExecutor(max_workers=self.workers) as pool:
                    futures = [pool.submit(self._worker, cursor, pbar) for _ in range(self.workers)]
                    for fut in cf.as_completed(futures):
                        fut.result()
            finally:
                pbar.close()
            if self.stop_flag:
                logger.warning(f"External checks stopped, {len(self.state.pending_external)} "
                               f"pending link reference(s) kept for the next run")

        if self.state_store is not None:
            with self._lock:
                self.state_store.save(self.state)
        return {"checked": self.checked, "attempts": self.attempts,
                "external_links": len(self.state.external_links), "stopped": self.stop_flag}
