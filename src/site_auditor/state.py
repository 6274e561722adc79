"""
Crawl State Module

Holds everything an audit learns while crawling and the adapters that turn it
into a JSON document and back:
- Frontier: pending URLs (FIFO queue + hash set for O(1) membership)
- visited set, per-URL link statistics, bad requests
- external link health and functional (mailto/tel) links
- external links discovered but not verified yet

Sets are written as sorted lists and rebuilt as sets on load; the frontier
keeps its queue order.
"""

from collections import deque
from dataclasses import dataclass, field

from .utils import FUNCTIONAL_SCHEMES


def _to_list(values) -> list:
    return sorted(values, key=str)


def _to_set(values, what: str) -> set:
    if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
        raise ValueError(f"{what} must be a list of strings")
    return set(values)


def _sources(data: dict, what: str) -> set:
    sources = _to_set(data.get("sources", []), what)
    if not sources:
        raise ValueError(f"{what}: sources must not be empty")
    return sources


def _check_redirects(redirects, what: str):
    if redirects is None:
        return None
    if (not isinstance(redirects, dict) or not isinstance(redirects.get("chain"), list)
            or not all(isinstance(hop, dict) for hop in redirects["chain"])):
        raise ValueError(f"{what}: invalid redirectChain")
    return redirects


def _check_status(status, what: str):
    if isinstance(status, bool) or not isinstance(status, (int, str)):
        raise ValueError(f"{what}: invalid status {status!r}")
    return status


def _check_mapping(data, what: str) -> dict:
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be an object")
    for key, value in data.items():
        if not isinstance(value, dict):
            raise ValueError(f"{what}[{key!r}] must be an object")
    return data


@dataclass
class PageLinkStat:
    count: int = 0
    anchors: set = field(default_factory=set)
    sources: set = field(default_factory=set)

    def to_dict(self) -> dict:
        return {"count": self.count, "anchors": _to_list(self.anchors), "sources": _to_list(self.sources)}

    @classmethod
    def from_dict(cls, data: dict, what: str = "stats") -> "PageLinkStat":
        count = data.get("count", 0)
        if isinstance(count, bool) or not isinstance(count, int):
            raise ValueError(f"{what}: count must be an integer")
        return cls(count, _to_set(data.get("anchors", []), what), _sources(data, what))


@dataclass
class BadRequestRecord:
    status: object
    sources: set = field(default_factory=set)

    def to_dict(self) -> dict:
        return {"status": self.status, "sources": _to_list(self.sources)}

    @classmethod
    def from_dict(cls, data: dict, what: str = "badRequests") -> "BadRequestRecord":
        return cls(_check_status(data.get("status"), what), _sources(data, what))


@dataclass
class ExternalLinkRecord:
    status: object
    sources: set = field(default_factory=set)
    redirects: dict = None   # fetcher.redirect_chain() of the last check

    def to_dict(self) -> dict:
        doc = {"status": self.status, "sources": _to_list(self.sources)}
        if self.redirects is not None:
            doc["redirectChain"] = self.redirects
        return doc

    @classmethod
    def from_dict(cls, data: dict, what: str = "externalLinks") -> "ExternalLinkRecord":
        return cls(_check_status(data.get("status"), what), _sources(data, what),
                   _check_redirects(data.get("redirectChain"), what))


@dataclass
class FunctionalLinkRecord:
    sources: set = field(default_factory=set)

    def to_dict(self) -> dict:
        return {"sources": _to_list(self.sources)}

    @classmethod
    def from_dict(cls, data: dict, what: str = "functional") -> "FunctionalLinkRecord":
        return cls(_sources(data, what))


class Frontier:
    """
    Insertion-ordered set of URLs waiting to be fetched.

    A deque gives the crawl order, a set answers membership in O(1). Both are
    always updated together.
    """

    def __init__(self, urls=()):
        self._queue = deque()
        self._members = set()
        for url in urls:
            self.add(url)

    def add(self, url: str) -> bool:
        if url in self._members:
            return False
        self._members.add(url)
        self._queue.append(url)
        return True

    def popleft(self) -> str:
        url = self._queue.popleft()
        self._members.discard(url)
        return url

    def __contains__(self, url) -> bool:
        return url in self._members

    def __len__(self) -> int:
        return len(self._queue)

    def __iter__(self):
        return iter(list(self._queue))

    def __repr__(self) -> str:
        return f"Frontier({list(self._queue)!r})"


@dataclass
class CrawlState:
    """Mutable crawl state for one audit run, shared by both crawl phases."""

    visited: set = field(default_factory=set)
    frontier: Frontier = field(default_factory=Frontier)
    stats: dict = field(default_factory=dict)
    bad_requests: dict = field(default_factory=dict)
    external_links: dict = field(default_factory=dict)
    mailto_links: dict = field(default_factory=dict)
    tel_links: dict = field(default_factory=dict)
    pending_external: set = field(default_factory=set)

    @classmethod
    def seeded(cls, start_url: str) -> "CrawlState":
        state = cls()
        state.frontier.add(start_url)
        return state

    def enqueue(self, url: str) -> bool:
        """Add url to the frontier unless it was already visited or queued."""
        if url in self.visited:
            return False
        return self.frontier.add(url)

    def add_to_stats(self, url: str, anchor: str, source: str):
        stat = self.stats.get(url)
        if stat is None:
            stat = self.stats[url] = PageLinkStat()
        stat.count += 1
        if anchor:
            stat.anchors.add(anchor)
        stat.sources.add(source)

    def record_bad_request(self, url: str, status, source: str):
        rec = self.bad_requests.get(url)
        if rec is None:
            self.bad_requests[url] = BadRequestRecord(status, {source})
        else:
            rec.status = status
            rec.sources.add(source)

    def record_functional(self, value: str, source: str):
        """Record "mailto:addr" / "tel:number" under its address."""
        scheme, _, address = value.partition(":")
        if scheme not in FUNCTIONAL_SCHEMES or not address:
            raise ValueError(f"not a functional link: {value!r}")
        target = self.mailto_links if scheme == "mailto" else self.tel_links
        rec = target.get(address)
        if rec is None:
            rec = target[address] = FunctionalLinkRecord()
        rec.sources.add(source)

    def add_pending_external(self, href: str, source: str):
        self.pending_external.add((href, source))

    def record_external(self, url: str, status, sources, redirects=None):
        rec = self.external_links.get(url)
        if rec is None:
            self.external_links[url] = ExternalLinkRecord(status, set(sources), redirects)
        else:
            rec.status = status
            rec.redirects = redirects
            rec.sources.update(sources)

    def pending_external_by_url(self) -> dict:
        """Group pending (href, source) pairs so each external URL is checked once."""
        grouped = {}
        for href, source in sorted(self.pending_external):
            grouped.setdefault(href, set()).add(source)
        return grouped

    # ---------- serialization ----------
    def to_dict(self, in_flight=()) -> dict:
        """
        Serialize the state.

        URLs in in_flight were dequeued but their results are not merged yet;
        they are written back at the head of the frontier instead of being
        reported as visited, so a resume fetches them again.
        """
        in_flight = [u for u in in_flight if u in self.visited]
        returning = set(in_flight)
        frontier = in_flight + [u for u in self.frontier if u not in returning]
        return {
            "visited": _to_list(self.visited - returning),
            "frontier": frontier,
            "stats": {u: s.to_dict() for u, s in sorted(self.stats.items())},
            "badRequests": {u: r.to_dict() for u, r in sorted(self.bad_requests.items())},
            "externalLinks": {u: r.to_dict() for u, r in sorted(self.external_links.items())},
            "mailtoLinks": {a: r.to_dict() for a, r in sorted(self.mailto_links.items())},
            "telLinks": {a: r.to_dict() for a, r in sorted(self.tel_links.items())},
            "pendingExternalLinks": [list(p) for p in sorted(self.pending_external)],
        }

    @classmethod
    def from_dict(cls, data) -> "CrawlState":
        """
        Rebuild a state from its serialized form.

        Raises:
            ValueError: if the document is not a structurally valid crawl state
        """
        if not isinstance(data, dict):
            raise ValueError("state document must be an object")
        for key in ("visited", "frontier"):
            if key not in data:
                raise ValueError(f"state document is missing {key!r}")

        visited = _to_set(data["visited"], "visited")
        frontier_list = data["frontier"]
        if not isinstance(frontier_list, list) or not all(isinstance(u, str) for u in frontier_list):
            raise ValueError("frontier must be a list of strings")

        pending = set()
        for pair in data.get("pendingExternalLinks", []) or []:
            if (not isinstance(pair, list) or len(pair) != 2
                    or not all(isinstance(v, str) for v in pair)):
                raise ValueError("pendingExternalLinks entries must be [href, source] pairs")
            pending.add((pair[0], pair[1]))

        return cls(
            visited=visited,
            frontier=Frontier(u for u in frontier_list if u not in visited),
            stats={u: PageLinkStat.from_dict(v) for u, v in
                   _check_mapping(data.get("stats", {}), "stats").items()},
            bad_requests={u: BadRequestRecord.from_dict(v) for u, v in
                          _check_mapping(data.get("badRequests", {}), "badRequests").items()},
            external_links={u: ExternalLinkRecord.from_dict(v) for u, v in
                            _check_mapping(data.get("externalLinks", {}), "externalLinks").items()},
            mailto_links={a: FunctionalLinkRecord.from_dict(v, "mailtoLinks") for a, v in
                          _check_mapping(data.get("mailtoLinks", {}), "mailtoLinks").items()},
            tel_links={a: FunctionalLinkRecord.from_dict(v, "telLinks") for a, v in
                       _check_mapping(data.get("telLinks", {}), "telLinks").items()},
            pending_external=pending,
        )
