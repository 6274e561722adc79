import base64
import gzip
import json
import logging
import os
import shutil
import threading
from collections import OrderedDict

logger = logging.getLogger("storage")

COMPRESSION_THRESHOLD = 10 * 1024  # compress records larger than 10KB
COMPRESSION_LEVEL = 6
SEGMENT_LENGTH = 200  # keeps every path component under NAME_MAX
EXTENSIONS = (".json.gz", ".json")


def encode_key(url: str) -> str:
    """Reversible, path-safe filename stem for a URL (base64url, no padding)."""
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")


def decode_key(stem: str) -> str:
    padded = stem + "=" * (-len(stem) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")


class PageDataStore:
    """
    One JSON record per crawled URL, with a bounded in-memory cache.

    Every record is written to its own file; at most max_items_in_memory
    records stay resident. Eviction removes the oldest entry by insertion
    order; a cache hit on get() does not move the entry.
    """

    def __init__(self, root: str, max_items_in_memory: int = 100,
                 compression_threshold: int = COMPRESSION_THRESHOLD):
        self.root = root
        self.max_items_in_memory = max(1, int(max_items_in_memory))
        self.compression_threshold = compression_threshold
        self._memory = OrderedDict()
        self._lock = threading.RLock()
        self.compression_stats = {"saved": 0, "total": 0}
        self._init_storage()

    def _init_storage(self):
        os.makedirs(self.root, exist_ok=True)

    def _paths(self, url: str):
        """
        Return the (compressed, plain) file paths for url.

        Long keys are cut into SEGMENT_LENGTH pieces; all but the last become
        nested directories, so joining the path components gives the key back.
        """
        stem = encode_key(url)
        parts = [stem[i:i + SEGMENT_LENGTH] for i in range(0, len(stem), SEGMENT_LENGTH)] or [""]
        base = os.path.join(self.root, *parts)
        return base + ".json.gz", base + ".json"

    def _remember(self, url: str, data):
        self._memory[url] = data
        if len(self._memory) > self.max_items_in_memory:
            self._memory.popitem(last=False)

    @staticmethod
    def _remove(path: str):
        if os.path.exists(path):
            os.remove(path)

    def set(self, url: str, data):
        raw = json.dumps(data, ensure_ascii=False).encode("utf-8")
        compressed, plain = self._paths(url)
        with self._lock:
            if len(raw) > self.compression_threshold:
                packed = gzip.compress(raw, compresslevel=COMPRESSION_LEVEL)
                os.makedirs(os.path.dirname(compressed), exist_ok=True)
                with open(compressed, "wb") as f:
                    f.write(packed)
                self._remove(plain)
                self.compression_stats["saved"] += len(raw) - len(packed)
                self.compression_stats["total"] += len(raw)
            else:
                os.makedirs(os.path.dirname(plain), exist_ok=True)
                with open(plain, "wb") as f:
                    f.write(raw)
                self._remove(compressed)
            # upsert keeps the original insertion position of an existing key
            if url in self._memory:
                self._memory[url] = data
            else:
                self._remember(url, data)

    @staticmethod
    def _read_file(path: str):
        if path.endswith(".gz"):
            with gzip.open(path, "rb") as f:
                return json.loads(f.read().decode("utf-8"))
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _load(self, url: str):
        for path in self._paths(url):
            if not os.path.exists(path):
                continue
            try:
                return self._read_file(path)
            except (OSError, EOFError, UnicodeDecodeError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to load page data for {url}: {e}")
        return None

    def get(self, url: str, default=None):
        with self._lock:
            if url in self._memory:
                return self._memory[url]
            data = self._load(url)
            if data is None:
                return default
            self._remember(url, data)
            return data

    def has(self, url: str) -> bool:
        with self._lock:
            if url in self._memory:
                return True
            return any(os.path.exists(p) for p in self._paths(url))

    __contains__ = has

    def delete(self, url: str):
        with self._lock:
            self._memory.pop(url, None)
            for path in self._paths(url):
                self._remove(path)

    def _disk_keys(self):
        if not os.path.isdir(self.root):
            return
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            rel = os.path.relpath(dirpath, self.root)
            prefix = "" if rel == os.curdir else "".join(rel.split(os.sep))
            for name in sorted(filenames):
                ext = next((e for e in EXTENSIONS if name.endswith(e)), None)
                if ext is None:
                    continue
                try:
                    yield decode_key(prefix + name[:-len(ext)]), os.path.join(dirpath, name)
                except (ValueError, UnicodeDecodeError):
                    logger.warning(f"Skipping page data file with foreign name: {name}")

    def items(self):
        """
        Yield (url, data) for every stored record exactly once.

        Memory-resident records come first, then records read lazily from
        disk, so the full data set is never materialized.
        """
        with self._lock:
            resident = list(self._memory.items())
        yielded = set()
        for url, data in resident:
            yielded.add(url)
            yield url, data
        for url, path in self._disk_keys():
            if url in yielded:
                continue
            yielded.add(url)
            try:
                data = self._read_file(path)
            except (OSError, EOFError, UnicodeDecodeError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to read page data file {path}: {e}")
                continue
            yield url, data

    __iter__ = items

    def keys(self):
        with self._lock:
            found = list(self._memory)
        seen = set(found)
        for url, _ in self._disk_keys():
            if url not in seen:
                seen.add(url)
                found.append(url)
        return found

    def __len__(self) -> int:
        return len(self.keys())

    @property
    def memory_count(self) -> int:
        return len(self._memory)

    def clear(self):
        with self._lock:
            self._memory.clear()
            self.compression_stats = {"saved": 0, "total": 0}
            shutil.rmtree(self.root, ignore_errors=True)
            self._init_storage()
