"""
Data extraction utilities for strategies.

These helpers pick the first working candidate out of an ordered list of
selectors or regex patterns, and turn HTML fragments into clean text.
"""

import html
import re
from typing import Callable, Iterable, List, Optional, TypeVar

from bs4 import BeautifulSoup, Tag

T = TypeVar('T')
R = TypeVar('R')

_TAG_RE = re.compile(r'<[^>]*>')
_WS_RE = re.compile(r'\s+')


def first_match(candidates: Iterable[T], probe: Callable[[T], Optional[R]]) -> Optional[R]:
    """
    Return the first truthy result of probe(candidate).

    Candidates are tried in order; a probe that raises is treated as a miss.

    Args:
        candidates: Ordered rules (selectors, patterns, strategies...)
        probe: Function evaluating one rule

    Returns:
        First truthy probe result, or None
    """
    for candidate in candidates:
        try:
            result = probe(candidate)
        except Exception:
            continue
        if result:
            return result
    return None


def clean_text(text: Optional[str]) -> Optional[str]:
    """Strip tags, unescape entities and collapse whitespace."""
    if text is None:
        return None
    text = _TAG_RE.sub(' ', text)
    text = html.unescape(text)
    return _WS_RE.sub(' ', text).strip()


def html_to_text(markup: str) -> str:
    """Visible text of an HTML document, without scripts and styles."""
    if not markup:
        return ""
    soup = BeautifulSoup(markup, 'html.parser')
    for element in soup(['script', 'style', 'noscript', 'template']):
        element.decompose()
    return _WS_RE.sub(' ', soup.get_text(' ')).strip()


def html_title(markup: str) -> str:
    match = re.search(r'<title[^>]*>([\s\S]*?)</title>', markup or '', re.IGNORECASE)
    return clean_text(match.group(1)) if match else ""


def select_text(node: Tag, selectors: Iterable[str]) -> Optional[str]:
    """Text of the first selector that matches a non-empty element."""
    def probe(selector):
        element = node.select_one(selector)
        return element.get_text(' ', strip=True) if element else None
    return first_match(selectors, probe)


def select_all_text(node: Tag, selectors: Iterable[str]) -> List[str]:
    """Texts of every element matched by the first selector with any match."""
    def probe(selector):
        return [el.get_text(' ', strip=True) for el in node.select(selector) if el.get_text(strip=True)]
    return first_match(selectors, probe) or []


def select_href(node: Tag, selectors: Iterable[str]) -> Optional[str]:
    """href of the first selector that matches a link."""
    def probe(selector):
        element = node.select_one(selector)
        return element.get('href') if element else None
    return first_match(selectors, probe)


def search_pattern(text: str, patterns: Iterable[str], group: str = 'value') -> Optional[str]:
    """
    Search text with each pattern in turn.

    Patterns may define named groups; `group` picks which one to return
    (falling back to group 1).
    """
    def probe(pattern):
        match = re.search(pattern, text, re.IGNORECASE)
        if not match:
            return None
        if group in match.groupdict():
            return match.group(group)
        return match.group(1)
    return first_match(patterns, probe)


def extract_job_id(url: Optional[str], pattern: str = r'job-listings-([\w-]+)') -> Optional[str]:
    """
    Extract the job id from a listing URL.

    Examples:
        https://www.naukri.com/job-listings-node-js-developer-acme-pune-2-5-years-120324500123
            -> node-js-developer-acme-pune-2-5-years-120324500123
    """
    if not url:
        return None
    match = re.search(pattern, url)
    return match.group(1) if match else None
