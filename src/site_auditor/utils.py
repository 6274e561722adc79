"""
Utility Functions for the Site Auditor

This module provides the URL helpers shared by every crawl phase:
- URL normalization (canonical form used as the key everywhere)
- Link classification (internal / external / functional / non-fetchable)
- Domain scoping helpers
- Small time helpers used by the audit history
"""

import enum
from datetime import datetime, timezone
from urllib.parse import (
    parse_qsl, quote, unquote, urldefrag, urlencode, urljoin, urlsplit, urlunsplit,
)

FUNCTIONAL_SCHEMES = ("mailto", "tel")
FETCHABLE_SCHEMES = ("http", "https")
DEFAULT_PORTS = {"http": 80, "https": 443}


class LinkKind(str, enum.Enum):
    """Exactly one kind is assigned to every resolvable reference."""

    INTERNAL = "internal"
    EXTERNAL = "external"
    FUNCTIONAL = "functional"
    NON_FETCHABLE = "non_fetchable"


def normalize_url(url: str, base: str | None = None):
    """
    Normalize a URL so syntactically equivalent URLs compare equal.

    Transformations:
    - Resolve relative references against base
    - Remove fragments
    - Lowercase scheme and host, drop default ports (80/443)
    - Normalize path encoding and strip trailing slashes (root stays "/")
    - Sort query parameters

    Normalizing an already normalized URL returns it unchanged.

    Args:
        url (str): URL or relative reference
        base (str, optional): Page URL used to resolve relative references

    Returns:
        str or None: Normalized URL, or None if the URL is malformed or not http(s)
    """
    if url is None:
        return None
    try:
        abs_url = urljoin(base, url.strip()) if base else url.strip()
        abs_url, _ = urldefrag(abs_url)
        parts = urlsplit(abs_url)
        scheme = parts.scheme.lower()
        if scheme not in FETCHABLE_SCHEMES:
            return None
        host = (parts.hostname or "").lower()
        if not host:
            return None
        port = parts.port  # raises ValueError on a bad port
    except ValueError:
        return None

    if ":" in host:
        host = f"[{host}]"  # IPv6 literal
    netloc = host if port in (None, DEFAULT_PORTS[scheme]) else f"{host}:{port}"

    path = quote(unquote(parts.path)).rstrip("/") or "/"
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    return urlunsplit((scheme, netloc, path, query, ""))


def extract_main_domain(domain: str) -> str:
    """
    Reduce user input to the registrable domain used for scoping.

    Accepts "https://www.example.com/", "www.example.com:8080" or "example.com"
    and returns "example.com".
    """
    value = (domain or "").strip().lower()
    if "://" in value:
        value = value.split("://", 1)[1]
    value = value.split("/", 1)[0].split("?", 1)[0].split("#", 1)[0]
    value = value.rsplit("@", 1)[-1]
    if not value.startswith("["):
        value = value.split(":", 1)[0]
    if value.startswith("www."):
        value = value[4:]
    return value.rstrip(".")


def strip_domain_input(domain: str) -> str:
    """Strip the scheme and trailing slashes from a CLI domain argument."""
    value = (domain or "").strip()
    if "://" in value:
        value = value.split("://", 1)[1]
    return value.rstrip("/")


def is_same_site(url: str, domain: str, follow_subdomains: bool = True) -> bool:
    """
    Check whether a URL belongs to the audited domain.

    Args:
        url (str): Absolute URL
        domain (str): Registrable domain (see extract_main_domain)
        follow_subdomains (bool): If True, subdomains of domain are internal too

    Returns:
        bool: True for the domain itself, its "www." host and (optionally) subdomains
    """
    try:
        host = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return False
    if not host:
        return False
    if host == domain or host == "www." + domain:
        return True
    return follow_subdomains and host.endswith("." + domain)


def _functional_address(scheme: str, ref: str) -> str | None:
    target = ref.split(":", 1)[1].split("?", 1)[0]
    address = unquote(target).strip()
    if scheme == "mailto":
        address = address.lower()
    else:
        address = "".join(address.split())
    return address or None


def classify_link(raw: str, page_url: str, domain: str, follow_subdomains: bool = True):
    """
    Classify a raw href found on page_url.

    Args:
        raw (str): The href attribute value as written in the markup
        page_url (str): Absolute URL of the page the reference was found on
        domain (str): Registrable domain being audited
        follow_subdomains (bool): Treat subdomains as internal

    Returns:
        tuple or None: (LinkKind, value) where value is the normalized URL,
        the functional address, or the raw reference for non-fetchable links.
        None when the reference cannot be resolved.
    """
    ref = (raw or "").strip()
    if not ref or ref.startswith("#"):
        return LinkKind.NON_FETCHABLE, ref

    try:
        scheme = urlsplit(ref).scheme.lower()
    except ValueError:
        return None

    if scheme in FUNCTIONAL_SCHEMES:
        address = _functional_address(scheme, ref)
        if address is None:
            return None
        return LinkKind.FUNCTIONAL, f"{scheme}:{address}"
    if scheme and scheme not in FETCHABLE_SCHEMES:
        # javascript:, data:, ftp:, void references and friends
        return LinkKind.NON_FETCHABLE, ref

    resolved = normalize_url(ref, page_url)
    if resolved is None:
        return None
    if is_same_site(resolved, domain, follow_subdomains):
        return LinkKind.INTERNAL, resolved
    return LinkKind.EXTERNAL, resolved


def utc_now_iso() -> str:
    """Return current UTC time in ISO format."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def parse_iso(value: str | None):
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
