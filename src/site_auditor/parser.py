"""
HTML Parser Module for the Site Auditor

This module provides functions for:
- Detecting HTML content
- Extracting anchors (href + anchor text) from HTML
- Building the default per-page data record

BeautifulSoup only builds a tree from the markup: scripts are never executed
and no sub-resource (image, stylesheet, frame) is ever requested.
"""

import logging

from bs4 import BeautifulSoup

from .utils import utc_now_iso

logger = logging.getLogger("parser")


def is_html_content(headers) -> bool:
    """
    Check if response headers indicate HTML content.

    Args:
        headers (dict): HTTP response headers

    Returns:
        bool: True if content type is HTML (or missing, which most servers mean as HTML)
    """
    headers = headers or {}
    ct = headers.get('Content-Type') or headers.get('content-type') or ''
    ct = ct.lower()
    return not ct or 'text/html' in ct or 'application/xhtml' in ct


def parse_page(html):
    """
    Parse HTML into a soup, swallowing parser errors.

    Malformed embedded markup must never abort a crawl; whatever was parsed
    before the error is discarded and None is returned instead.

    Args:
        html (str): Page markup

    Returns:
        BeautifulSoup or None
    """
    try:
        return BeautifulSoup(html or "", 'html.parser')
    except Exception as e:
        logger.debug("parse error ignored: %s", e)
        return None


def extract_anchors(soup, max_links: int = 5000):
    """
    Extract (href, anchor text) pairs for every <a href> in the document.

    Args:
        soup (BeautifulSoup): Parsed document (None yields no anchors)
        max_links (int): Safety cap on the number of anchors returned

    Returns:
        list: List of (href, text) tuples in document order
    """
    if soup is None:
        return []
    anchors = []
    for a in soup.find_all('a', href=True):
        if len(anchors) >= max_links:
            break
        try:
            text = " ".join(a.get_text(" ", strip=True).split())
        except Exception:
            text = ""
        anchors.append((a['href'], text))
    return anchors


def build_page_record(url: str, soup, status, headers, elapsed, size, link_counts=None) -> dict:
    """
    Build the default page data record stored in the page data cache.

    Report generators and analyzers read it back later and may add their own
    fields.
    """
    headers = headers or {}
    title = None
    description = None
    h1 = []
    if soup is not None:
        if soup.title and soup.title.string:
            title = soup.title.string.strip() or None
        meta = soup.find('meta', attrs={'name': 'description'})
        if meta and meta.get('content'):
            description = meta['content'].strip() or None
        h1 = [t for t in (h.get_text(" ", strip=True) for h in soup.find_all('h1')) if t]

    return {
        "url": url,
        "statusCode": status,
        "responseTime": round(elapsed * 1000) if elapsed is not None else None,
        "pageSize": size,
        "contentType": headers.get('Content-Type') or headers.get('content-type'),
        "title": title,
        "metaDescription": description,
        "h1": h1,
        "links": dict(link_counts or {}),
        "timestamp": utc_now_iso(),
    }
