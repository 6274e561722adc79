"""
Checkpoint Module - resumable crawl state on disk

The whole CrawlState is written to a single JSON document. Writes go to a
temporary file that replaces the previous checkpoint in one step, so a crash
mid-write leaves the last good checkpoint in place. A missing or unreadable
checkpoint simply means "no prior state".
"""

import json
import logging
import os
import tempfile

from .state import CrawlState
from .utils import utc_now_iso

logger = logging.getLogger("checkpoint")


def write_json_atomic(path: str, payload, indent=None):
    """Serialize payload to path through a temp file + os.replace."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=indent)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise


class StateStore:
    def __init__(self, path: str):
        self.path = path

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def save(self, state: CrawlState, in_flight=()) -> bool:
        """
        Persist the state. Failures are logged, never raised.

        Returns:
            bool: True if the checkpoint was written
        """
        try:
            doc = state.to_dict(in_flight=in_flight)
            doc["savedAt"] = utc_now_iso()
            write_json_atomic(self.path, doc)
            logger.debug("checkpoint saved: %s (%d visited, %d queued)",
                         self.path, len(doc["visited"]), len(doc["frontier"]))
            return True
        except Exception as e:
            logger.warning("checkpoint write failed: %s", e)
            return False

    def load(self):
        """
        Load the last checkpoint.

        Returns:
            CrawlState or None: None when the file is absent, not JSON, or not a valid state
        """
        if not self.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return CrawlState.from_dict(data)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValueError) as e:
            logger.warning("checkpoint read failed, starting fresh: %s", e)
            return None

    def load_or_seed(self, start_url: str):
        """
        Return (state, resumed).

        The prior state is used when it holds any progress; otherwise a fresh
        state with only start_url in the frontier is returned.
        """
        state = self.load()
        if state is not None and (state.visited or len(state.frontier)):
            return state, True
        return CrawlState.seeded(start_url), False
