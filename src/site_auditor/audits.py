"""
Audit History Module

Gives every crawl run of a domain a stable identity and keeps a history of
runs for later comparison:
- create-or-resume: an interrupted ("in-progress") run is resumed by default
- complete / fail: terminal transitions with summary counters
- cleanup: keep the newest N runs and delete the others from disk
- list / stats / delete helpers for the command line

Layout under the domain directory:
    audit-history.json          the index, rewritten wholesale on every change
    audits/<audit id>/          crawl-state.json, page-data/, audit.log, failed-urls.log
"""

import json
import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime

from .checkpoint import write_json_atomic
from .utils import parse_iso, utc_now_iso

logger = logging.getLogger("audits")

IN_PROGRESS = "in-progress"
COMPLETED = "completed"
FAILED = "failed"

INDEX_FILE = "audit-history.json"
STATE_FILE = "crawl-state.json"
PAGE_DATA_DIR = "page-data"
LOG_FILE = "audit.log"
FAILED_LOG_FILE = "failed-urls.log"


@dataclass(frozen=True)
class AuditPaths:
    audit_id: str
    audit_dir: str
    state_file: str
    page_data_dir: str
    log_file: str
    failed_log_file: str
    resumed: bool


class AuditManager:
    """
    Audit index for one domain.

    The index document is replaced wholesale on each write; concurrent writers
    from several processes are not supported.
    """

    def __init__(self, domain: str, domain_dir: str):
        """
        Args:
            domain (str): Domain the audits belong to
            domain_dir (str): Directory holding the index and the audits/ folder
        """
        self.domain = domain
        self.domain_dir = domain_dir
        self.audits_dir = os.path.join(domain_dir, "audits")
        self.index_path = os.path.join(domain_dir, INDEX_FILE)
        os.makedirs(self.audits_dir, exist_ok=True)
        self.index = self._load_index()

    # ---------- index I/O ----------
    def _empty_index(self) -> dict:
        return {"domain": self.domain, "audits": [], "totalAudits": 0,
                "lastAuditId": None, "lastUpdated": None}

    def _load_index(self) -> dict:
        if not os.path.exists(self.index_path):
            return self._empty_index()
        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict) or not isinstance(data.get("audits"), list):
                raise ValueError("audit index has no audits list")
            data["audits"] = [a for a in data["audits"] if isinstance(a, dict) and a.get("id")]
            data.setdefault("domain", self.domain)
            return data
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValueError) as e:
            logger.warning("audit index unreadable, starting a new one: %s", e)
            return self._empty_index()

    def _save_index(self):
        self.index["totalAudits"] = len(self.index["audits"])
        self.index["lastUpdated"] = utc_now_iso()
        try:
            write_json_atomic(self.index_path, self.index, indent=2)
        except OSError as e:
            logger.warning("audit index write failed: %s", e)

    # ---------- ids & paths ----------
    def _new_audit_id(self) -> str:
        base = datetime.now().strftime("audit-%Y-%m-%d-%H-%M-%S")
        taken = {a["id"] for a in self.index["audits"]}
        candidate, n = base, 1
        while candidate in taken or os.path.exists(os.path.join(self.audits_dir, candidate)):
            n += 1
            candidate = f"{base}-{n}"
        return candidate

    def paths_for(self, audit_id: str, resumed: bool = False) -> AuditPaths:
        audit_dir = os.path.join(self.audits_dir, audit_id)
        return AuditPaths(
            audit_id=audit_id,
            audit_dir=audit_dir,
            state_file=os.path.join(audit_dir, STATE_FILE),
            page_data_dir=os.path.join(audit_dir, PAGE_DATA_DIR),
            log_file=os.path.join(audit_dir, LOG_FILE),
            failed_log_file=os.path.join(audit_dir, FAILED_LOG_FILE),
            resumed=resumed,
        )

    # ---------- lifecycle ----------
    def _in_progress(self):
        for audit in self.list_audits():
            if audit.get("status") == IN_PROGRESS:
                return audit
        return None

    def create_or_resume(self, force_new: bool = False) -> AuditPaths:
        """
        Return the paths of the audit to run.

        Unless force_new is set, an audit still marked in-progress is resumed.
        Otherwise a new audit id is allocated and recorded as in-progress.
        """
        current = self._in_progress()
        if current is not None and not force_new:
            logger.info(f"Resuming audit {current['id']}")
            paths = self.paths_for(current["id"], resumed=True)
            os.makedirs(paths.audit_dir, exist_ok=True)
            return paths

        if current is not None:
            # only one audit may stay in-progress
            self._finish(current["id"], FAILED, error="superseded by a new audit")

        audit_id = self._new_audit_id()
        self.index["audits"].append({
            "id": audit_id,
            "startTime": utc_now_iso(),
            "endTime": None,
            "status": IN_PROGRESS,
            "duration": None,
            "pagesAnalyzed": None,
            "linksChecked": None,
            "error": None,
        })
        self.index["lastAuditId"] = audit_id
        self._save_index()
        paths = self.paths_for(audit_id)
        os.makedirs(paths.audit_dir, exist_ok=True)
        logger.info(f"Created audit {audit_id}")
        return paths

    def _finish(self, audit_id: str, status: str, **fields) -> bool:
        audit = self.get_audit(audit_id)
        if audit is None:
            return False
        end = utc_now_iso()
        started = parse_iso(audit.get("startTime"))
        audit["status"] = status
        audit["endTime"] = end
        audit["duration"] = (parse_iso(end) - started).total_seconds() if started else None
        audit.update(fields)
        self._save_index()
        return True

    def complete(self, audit_id: str, pages_analyzed: int = 0, links_checked: int = 0) -> bool:
        return self._finish(audit_id, COMPLETED, pagesAnalyzed=pages_analyzed,
                            linksChecked=links_checked)

    def fail(self, audit_id: str, error) -> bool:
        return self._finish(audit_id, FAILED, error=str(error))

    # ---------- queries ----------
    def get_audit(self, audit_id: str):
        for audit in self.index["audits"]:
            if audit.get("id") == audit_id:
                return audit
        return None

    def list_audits(self) -> list:
        """All audit records, newest first (index order breaks start time ties)."""
        ordered = sorted(enumerate(self.index["audits"]),
                         key=lambda p: (p[1].get("startTime") or "", p[0]), reverse=True)
        return [audit for _, audit in ordered]

    def get_audit_stats(self) -> dict:
        audits = self.index["audits"]
        done = [a for a in audits if a.get("status") == COMPLETED]
        durations = [a["duration"] for a in done if a.get("duration") is not None]
        pages = [a["pagesAnalyzed"] for a in done if a.get("pagesAnalyzed") is not None]
        return {
            "domain": self.domain,
            "total": len(audits),
            "completed": len(done),
            "failed": sum(1 for a in audits if a.get("status") == FAILED),
            "inProgress": sum(1 for a in audits if a.get("status") == IN_PROGRESS),
            "averageDuration": sum(durations) / len(durations) if durations else None,
            "averagePages": sum(pages) / len(pages) if pages else None,
            "lastAuditId": self.index.get("lastAuditId"),
        }

    # ---------- retention ----------
    def _remove_dir(self, audit_id: str) -> bool:
        audit_dir = os.path.join(self.audits_dir, audit_id)
        try:
            if os.path.exists(audit_dir):
                shutil.rmtree(audit_dir)
            return True
        except OSError as e:
            logger.warning(f"Failed to delete audit directory {audit_dir}: {e}")
            return False

    def delete_audit(self, audit_id: str) -> bool:
        if self.get_audit(audit_id) is None:
            return False
        self._remove_dir(audit_id)
        self.index["audits"] = [a for a in self.index["audits"] if a.get("id") != audit_id]
        if self.index.get("lastAuditId") == audit_id:
            newest = self.list_audits()
            self.index["lastAuditId"] = newest[0]["id"] if newest else None
        self._save_index()
        return True

    def cleanup(self, keep_count: int = 10) -> dict:
        """
        Keep the newest keep_count audits and delete the rest from disk.

        A directory that cannot be deleted is logged; the others are still
        cleaned and the index only lists the retained audits.
        """
        keep_count = max(0, int(keep_count))
        ordered = self.list_audits()
        kept, removed = ordered[:keep_count], ordered[keep_count:]
        for audit in removed:
            self._remove_dir(audit["id"])
            logger.info(f"Removed audit {audit['id']}")
        self.index["audits"] = list(reversed(kept))
        if removed:
            self.index["lastAuditId"] = kept[0]["id"] if kept else None
        self._save_index()
        return {"cleaned": len(removed), "kept": len(kept)}
