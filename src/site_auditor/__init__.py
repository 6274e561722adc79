"""
Site auditor: resumable crawl of a domain that catalogues internal link
structure, external link health and mailto/tel links.
"""
from site_auditor.runner import AuditConfig, AuditResult, run_audit
from site_auditor.state import CrawlState

__version__ = "1.0.0"
__all__ = ["AuditConfig", "AuditResult", "CrawlState", "run_audit"]
