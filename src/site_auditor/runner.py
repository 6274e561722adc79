"""
Audit Runner Module

Runs one complete audit of a domain:
1. Resolve (or resume) the audit run and its on-disk paths
2. Load the last checkpoint or seed the frontier with the start URL
3. Crawl internal pages
4. Verify external links
5. Persist the final state and close the audit record
"""

import logging
import os
import signal
import threading
from dataclasses import dataclass, fields

from .audits import AuditManager
from .checkpoint import StateStore
from .external import ExternalLinkChecker
from .fetcher import Fetcher
from .frontier import Crawler
from .storage import PageDataStore
from .utils import extract_main_domain, normalize_url, strip_domain_input

logger = logging.getLogger("runner")


@dataclass
class AuditConfig:
    user_agent: str = "SiteAuditor/1.0"
    workers: int = 10
    max_pages: int = 0
    external_workers: int = 10
    external_timeout_sec: float = 5.0
    external_max_retries: int = 2
    external_retry_delay_sec: float = 0.0
    page_timeout_sec: float = None
    max_page_bytes: int = 10 * 1024 * 1024
    checkpoint_every: int = 3
    max_items_in_memory: int = 100
    compression_threshold_bytes: int = 10 * 1024
    keep_audits: int = 0
    follow_subdomains: bool = True
    show_progress: bool = False

    @classmethod
    def from_dict(cls, cfg) -> "AuditConfig":
        """Build a config from a parsed YAML mapping; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in (cfg or {}).items() if k in known and v is not None}
        return cls(**values)


@dataclass
class AuditResult:
    audit_id: str
    resumed: bool
    state: object
    page_data: PageDataStore
    crawl_summary: dict
    external_summary: dict
    completed: bool


# Loggers whose INFO records belong in audit.log even when the caller never
# configured logging (the root logger then stays at WARNING).
AUDIT_LOGGERS = ("runner", "crawler", "fetcher", "external", "audits", "storage", "checkpoint", "parser")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def domain_dir_name(domain: str) -> str:
    return domain.strip().lower().replace(".", "_").replace(":", "_")


def _attach_log_file(path: str, logger_name=None, fmt: str = LOG_FORMAT):
    """
    Attach an appending file handler for the duration of one audit.

    Args:
        path (str): Log file path (its directory is created)
        logger_name (str, optional): Logger to attach to; the root logger by default
        fmt (str): Record format

    Returns:
        tuple: (handler, lowered) to pass to _detach_log_file; lowered lists the
        (logger, previous level) pairs that were opened up to INFO
    """
    os.makedirs(os.path.dirname(path), exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt))
    logging.getLogger(logger_name).addHandler(handler)

    lowered = []
    if logger_name is None:
        for name in AUDIT_LOGGERS:
            lg = logging.getLogger(name)
            if lg.getEffectiveLevel() > logging.INFO:
                lowered.append((lg, lg.level))
                lg.setLevel(logging.INFO)
    return handler, lowered


def _detach_log_file(attached, logger_name=None):
    handler, lowered = attached
    logging.getLogger(logger_name).removeHandler(handler)
    handler.close()
    for lg, level in lowered:
        lg.setLevel(level)


def run_audit(domain: str, config: AuditConfig = None, data_root: str = "data",
              force_new: bool = False, session=None, handle_sigint: bool = False,
              page_data_extractor=None) -> AuditResult:
    """
    Run (or resume) an audit of domain.

    Args:
        domain (str): Domain as typed by the operator ("example.com", "https://example.com/")
        config (AuditConfig): Tunables; defaults are used when omitted
        data_root (str): Root folder holding one directory per domain
        force_new (bool): Start a new audit even if one is in progress
        session: requests-compatible session (tests pass a fake transport)
        handle_sigint (bool): Turn Ctrl+C into a graceful stop (main thread only)
        page_data_extractor (callable, optional): Custom page data record builder

    Returns:
        AuditResult: Final state and summaries. An audit stopped by Ctrl+C, in
        either phase, is left in-progress (completed=False) so the next run
        resumes it.
    """
    config = config or AuditConfig()
    host = strip_domain_input(domain)
    main_domain = extract_main_domain(host)
    start_url = normalize_url(f"https://{host}")
    if not main_domain or start_url is None:
        raise ValueError(f"Invalid domain: {domain!r}")

    manager = AuditManager(host, os.path.join(data_root, domain_dir_name(host)))
    paths = manager.create_or_resume(force_new=force_new)
    audit_log = _attach_log_file(paths.log_file)
    failed_log = _attach_log_file(paths.failed_log_file, "failed_urls", "%(asctime)s\t%(message)s")

    fetcher = Fetcher(
        config.user_agent,
        page_timeout=config.page_timeout_sec,
        link_timeout=config.external_timeout_sec,
        retries=config.external_max_retries,
        retry_delay=config.external_retry_delay_sec,
        max_page_bytes=config.max_page_bytes,
        session=session,
    )
    page_data = PageDataStore(paths.page_data_dir, config.max_items_in_memory,
                              config.compression_threshold_bytes)
    store = StateStore(paths.state_file)

    previous_handler = None
    # whichever phase is running receives Ctrl+C
    running = {"phase": None}
    try:
        state, loaded = store.load_or_seed(start_url)
        if loaded:
            logger.info(f"Resuming from checkpoint: {len(state.visited)} visited, "
                        f"{len(state.frontier)} queued")
        else:
            logger.info(f"Starting fresh crawl at {start_url}")

        crawler = Crawler(
            state, fetcher, main_domain,
            page_store=page_data,
            state_store=store,
            workers=config.workers,
            max_pages=config.max_pages,
            checkpoint_every=config.checkpoint_every,
            follow_subdomains=config.follow_subdomains,
            show_progress=config.show_progress,
            page_data_extractor=page_data_extractor,
        )

        running["phase"] = crawler
        if handle_sigint and threading.current_thread() is threading.main_thread():
            def _on_sigint(sig, frame):
                print("\n🛑 Stopping audit... please wait for active workers to finish.")
                running["phase"].stop()
            previous_handler = signal.signal(signal.SIGINT, _on_sigint)

        crawl_summary = crawler.run()
        if crawler.stop_flag:
            logger.warning(f"Audit {paths.audit_id} interrupted; run again to resume")
            return AuditResult(paths.audit_id, paths.resumed, state, page_data,
                               crawl_summary, {}, completed=False)

        checker = ExternalLinkChecker(state, fetcher, state_store=store,
                                      workers=config.external_workers,
                                      show_progress=config.show_progress)
        running["phase"] = checker
        external_summary = checker.run()
        if checker.stop_flag:
            logger.warning(f"Audit {paths.audit_id} interrupted during external checks; run again to resume")
            return AuditResult(paths.audit_id, paths.resumed, state, page_data,
                               crawl_summary, external_summary, completed=False)

        manager.complete(paths.audit_id, pages_analyzed=len(state.visited),
                         links_checked=len(state.external_links))
        if config.keep_audits > 0:
            manager.cleanup(config.keep_audits)
        return AuditResult(paths.audit_id, paths.resumed, state, page_data,
                           crawl_summary, external_summary, completed=True)
    except Exception as e:
        logger.exception(f"Audit {paths.audit_id} failed")
        manager.fail(paths.audit_id, e)
        raise
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)
        _detach_log_file(failed_log, "failed_urls")
        _detach_log_file(audit_log)
        fetcher.close()
