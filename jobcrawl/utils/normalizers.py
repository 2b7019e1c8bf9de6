"""
Data normalization utilities.

These functions map the raw records produced by every strategy into the
canonical Listing schema.
"""

import logging
import re
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple
from urllib.parse import urljoin

from ..base import Listing, NOT_AVAILABLE, NormalizationError, RawRecord
from .extractors import clean_text, extract_job_id

logger = logging.getLogger(__name__)

# Values the original sources use to mean "not provided"
MISSING_MARKERS = {'n/a', 'na', 'not disclosed', '-', 'none', 'null'}

# Raw record keys accepted for each Listing field, in order of preference
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    'title': ('title', 'jobTitle', 'job_title'),
    'company': ('company', 'companyName', 'company_name'),
    'experience_range': ('experience_range', 'experience', 'experienceText'),
    'location': ('location', 'locations', 'placeholders_location'),
    'salary': ('salary', 'salaryText'),
    'skills': ('skills', 'keySkills', 'tagsAndSkills'),
    'description': ('description', 'jobDescription', 'job_description'),
    'posted_date': ('posted_date', 'postedDate', 'createdDate', 'footerPlaceholderLabel'),
    'source_url': ('source_url', 'url', 'jdURL', 'sourceURL'),
    'job_id': ('job_id', 'jobId', 'id'),
}


def _is_missing(value: Any) -> bool:
    if value is None or value is NOT_AVAILABLE:
        return True
    if isinstance(value, str):
        return value.strip().lower() in MISSING_MARKERS
    return False


def normalize_text(value: Any) -> Any:
    """
    Normalize a scalar field.

    Examples:
        None           -> NOT_AVAILABLE
        'N/A'          -> NOT_AVAILABLE
        '  Acme <b>Ltd</b> ' -> 'Acme Ltd'
        ''             -> ''   (present but empty)
    """
    if _is_missing(value):
        return NOT_AVAILABLE
    if isinstance(value, (list, tuple)):
        parts = [clean_text(str(v)) for v in value if not _is_missing(v)]
        parts = [p for p in parts if p]
        return ', '.join(parts) if parts else NOT_AVAILABLE
    return clean_text(str(value))


def normalize_skills(value: Any) -> Any:
    """
    Normalize skills into a tuple of distinct labels.

    Examples:
        'Node.js, React , node.js' -> ('Node.js', 'React')
        ['AWS', 'Docker']          -> ('AWS', 'Docker')
    """
    if _is_missing(value):
        return NOT_AVAILABLE
    if isinstance(value, str):
        items = re.split(r'[,|;]', value)
    else:
        items = list(value)
    skills = []
    seen = set()
    for item in items:
        if isinstance(item, Mapping):
            item = item.get('label') or item.get('name')
        text = clean_text(str(item)) if item is not None else ''
        if text and text.lower() not in seen and text.lower() not in MISSING_MARKERS:
            seen.add(text.lower())
            skills.append(text)
    return tuple(skills) if skills else NOT_AVAILABLE


def normalize_experience(value: Any) -> Any:
    """
    Normalize an experience range.

    Examples:
        '2-5 Yrs'   -> '2-5 years'
        '2 - 5 years' -> '2-5 years'
        'Fresher'   -> 'Fresher'
    """
    text = normalize_text(value)
    if text is NOT_AVAILABLE or not text:
        return text
    match = re.search(r'(\d+)\s*(?:-|to)\s*(\d+)\s*(?:yrs?|years?)?', text, re.IGNORECASE)
    if match:
        return f"{match.group(1)}-{match.group(2)} years"
    return text


class RecordNormalizer:
    """
    Maps raw strategy records onto Listing.

    Usage:
        normalizer = RecordNormalizer(base_url='https://www.naukri.com/')
        listing = normalizer.normalize({'title': 'Dev', 'url': '/job-listings-1'})
    """

    def __init__(self, base_url: Optional[str] = None, job_id_pattern: str = r'job-listings-([\w-]+)'):
        self.base_url = base_url
        self.job_id_pattern = job_id_pattern

    @staticmethod
    def _pick(raw: RawRecord, field: str) -> Any:
        for key in FIELD_ALIASES[field]:
            if key in raw:
                return raw[key]
        return None

    def _source_url(self, raw: RawRecord) -> str:
        url = self._pick(raw, 'source_url')
        if isinstance(url, Sequence) and not isinstance(url, str):
            url = next(iter(url), None)
        if _is_missing(url) or not str(url).strip():
            raise NormalizationError(f"Record has no source URL: {dict(raw)!r:.120}")
        url = str(url).strip()
        if self.base_url and not url.startswith(('http://', 'https://')):
            url = urljoin(self.base_url, url)
        return url

    def normalize(self, raw: RawRecord) -> Listing:
        """
        Convert one raw record.

        Raises:
            NormalizationError: If the record has no source URL
        """
        if not isinstance(raw, Mapping):
            raise NormalizationError(f"Expected a mapping, got {type(raw).__name__}")

        source_url = self._source_url(raw)

        job_id = normalize_text(self._pick(raw, 'job_id'))
        if job_id is NOT_AVAILABLE or not job_id:
            job_id = extract_job_id(source_url, self.job_id_pattern) or NOT_AVAILABLE

        return Listing(
            source_url=source_url,
            title=normalize_text(self._pick(raw, 'title')),
            company=normalize_text(self._pick(raw, 'company')),
            experience_range=normalize_experience(self._pick(raw, 'experience_range')),
            location=normalize_text(self._pick(raw, 'location')),
            salary=normalize_text(self._pick(raw, 'salary')),
            skills=normalize_skills(self._pick(raw, 'skills')),
            description=normalize_text(self._pick(raw, 'description')),
            posted_date=normalize_text(self._pick(raw, 'posted_date')),
            job_id=job_id,
        )
