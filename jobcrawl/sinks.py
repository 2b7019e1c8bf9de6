"""
Sinks receive accepted listings as they are collected.

emit() is called once per accepted listing, in page-then-card order, and
finalize() exactly once when the run terminates.
"""

import csv
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union

from .base import Listing, NOT_AVAILABLE, CrawlSummary

logger = logging.getLogger(__name__)

# Column heading -> Listing attribute
CSV_COLUMNS = [
    ('Job Title', 'title'),
    ('Company', 'company'),
    ('Experience', 'experience_range'),
    ('Location', 'location'),
    ('Salary', 'salary'),
    ('Skills', 'skills'),
    ('Job Description', 'description'),
    ('Posted Date', 'posted_date'),
    ('Job URL', 'source_url'),
    ('Job ID', 'job_id'),
]


class CrawlSink(ABC):
    """Abstract consumer of crawl output."""

    @abstractmethod
    def emit(self, listing: Listing) -> None:
        pass

    @abstractmethod
    def finalize(self, summary: CrawlSummary) -> None:
        pass


class MemorySink(CrawlSink):
    """Keeps listings in memory. Used by tests and the manager."""

    def __init__(self):
        self.listings: List[Listing] = []
        self.summary: Optional[CrawlSummary] = None
        self.finalize_calls = 0

    def emit(self, listing: Listing) -> None:
        self.listings.append(listing)

    def finalize(self, summary: CrawlSummary) -> None:
        self.summary = summary
        self.finalize_calls += 1


def _cell(value) -> str:
    if value is NOT_AVAILABLE or value is None:
        return str(NOT_AVAILABLE)
    if isinstance(value, (list, tuple)):
        return ', '.join(str(v) for v in value)
    return str(value)


class CsvSink(CrawlSink):
    """
    Streams listings to a CSV file.

    The header is written on the first emit, and every row is flushed as
    it arrives so an aborted run still leaves its partial results on disk.
    Missing fields are written as 'N/A'.

    Args:
        path: Output file
        append: Append to an existing file instead of truncating it
    """

    def __init__(self, path: Union[str, Path], append: bool = False):
        self.path = Path(path)
        self.append = append
        self.rows_written = 0
        self.summary: Optional[CrawlSummary] = None
        self._file = None
        self._writer = None
        self._opened = False

    def _open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Reopening after finalize (one sink shared by several runs) appends
        mode = 'a' if (self.append or self._opened) else 'w'
        write_header = mode == 'w' or not (self.path.exists() and self.path.stat().st_size > 0)
        self._file = open(self.path, mode, newline='', encoding='utf-8')
        self._opened = True
        self._writer = csv.writer(self._file)
        if write_header:
            self._writer.writerow([heading for heading, _ in CSV_COLUMNS])

    def emit(self, listing: Listing) -> None:
        if self._writer is None:
            self._open()
        self._writer.writerow([_cell(getattr(listing, attr)) for _, attr in CSV_COLUMNS])
        self._file.flush()
        self.rows_written += 1

    def finalize(self, summary: CrawlSummary) -> None:
        self.summary = summary
        if self._writer is None and not self._opened and not self.append:
            self._open()  # header-only file for an empty run
        self.close()
        logger.info(f"Saved {summary.total_collected} listings to {self.path} ({summary.label})")

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            self._writer = None
