"""
Frontier Module - internal crawl scheduler

This module drains the crawl frontier with a fixed pool of worker threads:
- URL hand-out with visited marking at dequeue time
- Waiting (not terminating) while other workers may still discover pages
- Optional page-count limit and graceful stop
- Link discovery and classification for every fetched page
- Periodic checkpointing of the crawl state
"""

import concurrent.futures as cf
import logging
import threading
from dataclasses import dataclass, field

from tqdm import tqdm

from .fetcher import FETCH_ERROR
from .parser import build_page_record, extract_anchors, is_html_content, parse_page
from .utils import LinkKind, classify_link

logger = logging.getLogger("crawler")

# one line per internal page that could not be loaded; the runner attaches
# the per-audit failed-urls.log file to it
failed_log = logging.getLogger("failed_urls")
failed_log.setLevel(logging.INFO)
failed_log.propagate = False


@dataclass
class PageOutcome:
    """What a worker learned from one page, merged into the state under the lock."""

    bad_status: object = None
    internal: list = field(default_factory=list)     # (url, anchor text)
    functional: list = field(default_factory=list)   # "mailto:..." / "tel:..."
    external: list = field(default_factory=list)     # normalized external URLs

    @property
    def failed(self) -> bool:
        return self.bad_status is not None


class Crawler:
    """
    Internal crawl scheduler.

    Workers share one condition variable that guards the frontier, the visited
    set, the counters and every CrawlState map. Fetching and parsing happen
    outside the lock; only the merge of a page's outcome is done under it.
    """

    def __init__(self, state, fetcher, domain: str, page_store=None, state_store=None,
                 workers: int = 10, max_pages: int = 0, checkpoint_every: int = 3,
                 follow_subdomains: bool = True, show_progress: bool = False,
                 page_data_extractor=None):
        """
        Initialize the scheduler.

        Args:
            state (CrawlState): Crawl state to drain and update in place
            fetcher (Fetcher): HTTP client
            domain (str): Registrable domain being audited
            page_store (PageDataStore, optional): Receives one record per fetched page
            state_store (StateStore, optional): Checkpoint target
            workers (int): Number of concurrent workers
            max_pages (int): Stop handing out work after this many pages (0 = unlimited)
            checkpoint_every (int): Checkpoint after every N-th processed page
            follow_subdomains (bool): Treat subdomains as internal
            show_progress (bool): Show a tqdm progress bar
            page_data_extractor (callable, optional): Replaces build_page_record
        """
        self.state = state
        self.fetcher = fetcher
        self.domain = domain
        self.page_store = page_store
        self.state_store = state_store
        self.workers = max(1, int(workers))
        self.max_pages = max(0, int(max_pages or 0))
        self.checkpoint_every = max(1, int(checkpoint_every))
        self.follow_subdomains = follow_subdomains
        self.show_progress = show_progress
        self.page_data_extractor = page_data_extractor or build_page_record

        self._cv = threading.Condition()
        self._in_flight = []       # dequeued URLs whose outcome is not merged yet
        self.processed = 0         # URLs handed out during this run
        self.active = 0            # workers currently fetching
        self.stop_flag = False
        self._pbar = None

    # ---------- control ----------
    def stop(self):
        """Stop handing out work; pages already in flight still complete."""
        with self._cv:
            self.stop_flag = True
            self._cv.notify_all()

    @property
    def limit_reached(self) -> bool:
        return bool(self.max_pages) and self.processed >= self.max_pages

    # ---------- scheduling ----------
    def _next_url(self):
        """
        Hand out the next URL, or None when there is no more work.

        If the frontier is empty while other workers are still fetching, the
        caller waits: those workers may discover new pages. The crawl only ends
        when the frontier is empty and no worker is active.
        """
        with self._cv:
            while True:
                if self.stop_flag or self.limit_reached:
                    return None
                if len(self.state.frontier):
                    url = self.state.frontier.popleft()
                    self.state.visited.add(url)
                    self._in_flight.append(url)
                    self.processed += 1
                    self.active += 1
                    return url, self.processed
                if self.active == 0:
                    self._cv.notify_all()
                    return None
                self._cv.wait()

    def _finish(self, url: str, outcome):
        with self._cv:
            try:
                if outcome is not None:
                    self._merge(url, outcome)
            finally:
                if url in self._in_flight:
                    self._in_flight.remove(url)
                self.active -= 1
                self._cv.notify_all()
        if self._pbar is not None:
            self._pbar.update(1)

    def _merge(self, url: str, outcome: PageOutcome):
        state = self.state
        if outcome.failed:
            state.record_bad_request(url, outcome.bad_status, url)
            return
        for target, anchor in outcome.internal:
            state.add_to_stats(target, anchor, url)
            state.enqueue(target)
        for value in outcome.functional:
            state.record_functional(value, url)
        for href in outcome.external:
            state.add_pending_external(href, url)

    # ---------- page work ----------
    def _process(self, url: str) -> PageOutcome:
        status, headers, text, elapsed, err = self.fetcher.fetch(url)
        if err or status is None:
            logger.warning(f"Fetch failed {url}: {err}")
            failed_log.info(f"{url}\t{err or 'no response'}")
            return PageOutcome(bad_status=FETCH_ERROR)
        if not 200 <= status < 300:
            logger.info(f"HTTP {status} {url}")
            failed_log.info(f"{url}\tHTTP {status}")
            return PageOutcome(bad_status=status)

        outcome = PageOutcome()
        soup = parse_page(text) if is_html_content(headers) else None
        counts = {kind.value: 0 for kind in LinkKind}
        for href, anchor in extract_anchors(soup):
            classified = classify_link(href, url, self.domain, self.follow_subdomains)
            if classified is None:
                continue
            kind, value = classified
            counts[kind.value] += 1
            if kind is LinkKind.INTERNAL:
                outcome.internal.append((value, anchor))
            elif kind is LinkKind.FUNCTIONAL:
                outcome.functional.append(value)
            elif kind is LinkKind.EXTERNAL:
                outcome.external.append(value)

        if self.page_store is not None:
            try:
                record = self.page_data_extractor(url, soup, status, headers, elapsed,
                                                  len(text.encode("utf-8")), counts)
                self.page_store.set(url, record)
            except Exception as e:
                logger.warning(f"Page data not stored for {url}: {e}")
        return outcome

    def _worker(self, worker_id: int) -> int:
        handled = 0
        while True:
            item = self._next_url()
            if item is None:
                break
            url, ordinal = item
            handled += 1
            logger.debug(f"[Worker {worker_id}] Processing {ordinal}: {url}")

            outcome = None
            try:
                outcome = self._process(url)
            except Exception:
                logger.exception(f"[Worker {worker_id}] error on {url}")
                failed_log.info(f"{url}\tunexpected error")
                outcome = PageOutcome(bad_status=FETCH_ERROR)
            finally:
                self._finish(url, outcome)

            if ordinal % self.checkpoint_every == 0:
                self.checkpoint()

        logger.debug(f"[Worker {worker_id}] Finished - processed {handled} pages")
        return handled

    def checkpoint(self) -> bool:
        if self.state_store is None:
            return False
        with self._cv:
            return self.state_store.save(self.state, in_flight=list(self._in_flight))

    # ---------- main loop ----------
    def run(self) -> dict:
        """
        Drain the frontier and return a summary dict.

        The state is checkpointed once more when the phase ends, whether it
        ended by exhaustion, by the page limit or by stop().
        """
        queued = len(self.state.frontier)
        if queued == 0:
            logger.info("No internal links to process.")
            self.checkpoint()
            return self._summary()

        limit_msg = f" (limited to {self.max_pages})" if self.max_pages else ""
        logger.info(f"Starting {self.workers} workers for {queued} queued URL(s){limit_msg}")

        self._pbar = tqdm(
            total=self.max_pages or None,
            desc="Crawling",
            unit="page",
            ncols=90,
            disable=not self.show_progress,
        )
        try:
            with cf.ThreadPoolExecutor(max_workers=self.workers) as pool:
                pending = {pool.submit(self._worker, i + 1) for i in range(self.workers)}
                while pending:
                    done, pending = cf.wait(pending, timeout=0.5, return_when=cf.FIRST_COMPLETED)
                    for fut in done:
                        try:
                            fut.result()
                        except Exception as e:
                            logger.exception("worker error: %s", e)
        finally:
            self._pbar.close()
            self._pbar = None
            self.checkpoint()

        summary = self._summary()
        limit_note = " (limit reached)" if self.limit_reached else ""
        logger.info(f"Processed {summary['processed']} internal links{limit_note}")
        if summary["remaining"] and (self.limit_reached or self.stop_flag):
            logger.warning(f"{summary['remaining']} internal links remain unprocessed. "
                           f"Increase the page limit or set it to 0 for unlimited.")
        return summary

    def _summary(self) -> dict:
        with self._cv:
            return {
                "processed": self.processed,
                "visited": len(self.state.visited),
                "remaining": len(self.state.frontier),
                "bad_requests": len(self.state.bad_requests),
                "pending_external": len(self.state.pending_external),
                "limit_reached": self.limit_reached,
                "stopped": self.stop_flag,
            }
