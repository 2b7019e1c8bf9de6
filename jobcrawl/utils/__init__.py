"""Shared utilities for strategies and the normalizer."""

from .normalizers import (
    RecordNormalizer,
    normalize_text,
    normalize_skills,
    normalize_experience,
)
from .extractors import (
    first_match,
    clean_text,
    html_to_text,
    html_title,
    extract_job_id,
)

__all__ = [
    'RecordNormalizer',
    'normalize_text',
    'normalize_skills',
    'normalize_experience',
    'first_match',
    'clean_text',
    'html_to_text',
    'html_title',
    'extract_job_id',
]
