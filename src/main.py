#!/usr/bin/env python3
"""
Site Auditor Main Module

This module serves as the entry point for the site auditor. It handles
configuration, command-line arguments, logging setup, and running (or
resuming) an audit of a domain.

Usage:
    site-auditor <domain> [max_internal_links] [options]
"""

import argparse
import json
import logging
import os
import sys

import yaml

from site_auditor.audits import AuditManager
from site_auditor.runner import AuditConfig, domain_dir_name, run_audit
from site_auditor.utils import strip_domain_input


def parse_limit(value, default: int) -> int:
    """Parse the optional page limit; anything invalid falls back to default."""
    if value is None:
        return default
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return default
    return limit if limit >= 0 else default


def parse_args(argv=None):
    """Parse command-line arguments for the auditor.

    Returns:
        argparse.Namespace: Parsed command-line arguments including:
            - domain: Domain to audit (scheme and trailing slash are stripped)
            - max_internal_links: Optional page limit (0 = unlimited)
            - config: Path to configuration file (default: config.yaml)
            - data-root: Root directory for audit data
            - workers / external-workers: Pool sizes
            - force-new: Start a new audit even if one is in progress
            - keep: Number of audits to retain after a successful run
            - list-audits / cleanup: History management instead of a crawl
            - verbose: Enable verbose logging
    """
    ap = argparse.ArgumentParser(
        prog='site-auditor',
        description='Crawl a website and audit its internal, external and functional links.'
    )
    ap.add_argument('domain', help='Domain to audit, e.g. example.com')
    ap.add_argument('max_internal_links', nargs='?', default=None,
                    help='Maximum number of internal pages to crawl (0 = unlimited)')
    ap.add_argument('--config', default='config.yaml')
    ap.add_argument('--data-root', default='data')
    ap.add_argument('--workers', type=int)
    ap.add_argument('--external-workers', type=int)
    ap.add_argument('--force-new', action='store_true')
    ap.add_argument('--keep', type=int)
    ap.add_argument('--list-audits', action='store_true')
    ap.add_argument('--cleanup', type=int, metavar='KEEP')
    ap.add_argument('--no-progress', action='store_true')
    ap.add_argument('--verbose', action='store_true')
    args = ap.parse_args(argv)
    args.domain = strip_domain_input(args.domain)
    if not args.domain:
        ap.error('domain is required')
    return args


def load_config(path):
    """Load auditor configuration from YAML file.

    Searches both the provided path (relative to current working directory)
    and the directory of this file. A missing file means built-in defaults.
    """
    candidates = [path]
    if not os.path.isabs(path):
        candidates.append(os.path.join(os.path.dirname(__file__), path))

    for candidate in candidates:
        if os.path.exists(candidate):
            with open(candidate, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
    return {}


def setup_logging(verbose: bool, log_dir: str):
    """Configure logging for the auditor.

    Sets up logging to both console and file, with level based on verbosity.

    Args:
        verbose (bool): If True, set logging level to DEBUG; otherwise INFO
        log_dir (str): Directory where log files will be stored
    """
    os.makedirs(log_dir, exist_ok=True)
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(os.path.join(log_dir, 'auditor.log'), mode='a', encoding='utf-8')
        ]
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def print_audits(manager: AuditManager):
    audits = manager.list_audits()
    if not audits:
        print("📭 No audits found for this domain.")
        return
    print(f"{'ID':<30}{'Status':<14}{'Started':<28}{'Pages':>8}{'Links':>8}")
    for a in audits:
        print(f"{a['id']:<30}{a.get('status', ''):<14}{a.get('startTime') or '':<28}"
              f"{a.get('pagesAnalyzed') or 0:>8}{a.get('linksChecked') or 0:>8}")
    print(json.dumps(manager.get_audit_stats(), indent=2))


def print_report(result):
    state = result.state
    print("\n📊 Report:")
    print(f"  - audit_id: {result.audit_id}{' (resumed)' if result.resumed else ''}")
    print(f"  - pages_visited: {len(state.visited)}")
    print(f"  - internal_urls_linked: {len(state.stats)}")
    print(f"  - bad_requests: {len(state.bad_requests)}")
    print(f"  - external_links: {len(state.external_links)}")
    broken = sum(1 for r in state.external_links.values()
                 if not isinstance(r.status, int) or r.status >= 400)
    print(f"  - external_links_broken: {broken}")
    print(f"  - mailto_links: {len(state.mailto_links)}")
    print(f"  - tel_links: {len(state.tel_links)}")
    print(f"  - queue_left: {len(state.frontier)}")
    print(f"  - page_data_records: {len(result.page_data)}")


def main(argv=None):
    """Main entry point for the auditor."""
    # Parse arguments and load configuration
    args = parse_args(argv)
    cfg = load_config(args.config)

    # Override configuration with command-line arguments if provided
    cfg['max_pages'] = parse_limit(args.max_internal_links, parse_limit(cfg.get('max_pages'), 0))
    if args.workers:          cfg['workers'] = args.workers
    if args.external_workers: cfg['external_workers'] = args.external_workers
    if args.keep is not None: cfg['keep_audits'] = args.keep
    if args.no_progress:      cfg['show_progress'] = False
    config = AuditConfig.from_dict(cfg)

    domain_root = os.path.join(args.data_root, domain_dir_name(args.domain))
    setup_logging(args.verbose, os.path.join(domain_root, 'logs'))

    if args.list_audits or args.cleanup is not None:
        manager = AuditManager(args.domain, domain_root)
        if args.cleanup is not None:
            if args.cleanup < 1:
                print("❌ Keep count must be a positive number", file=sys.stderr)
                return 1
            result = manager.cleanup(args.cleanup)
            print(f"🧹 Removed {result['cleaned']} audit(s), kept {result['kept']}")
        if args.list_audits:
            print_audits(manager)
        return 0

    print("🆕 NEW audit requested" if args.force_new else "⏸️ RESUME (continue previous audit if one is in progress)")
    print(f"📂 Data directory: {domain_root}")
    limit = f"{config.max_pages} pages" if config.max_pages else "unlimited"
    print(f"🚀 Auditing {args.domain} ({limit})... Press Ctrl+C to stop gracefully.")

    result = run_audit(args.domain, config, data_root=args.data_root,
                       force_new=args.force_new, handle_sigint=True)
    print_report(result)
    if not result.completed:
        print("⏸️ Audit interrupted; run the same command again to resume.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
