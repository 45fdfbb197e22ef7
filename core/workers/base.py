"""
Shared worker plumbing: run summaries and cursor page iteration.

A worker run walks every page of its eligible set. Rows are ordered by id
and the cursor is the last id seen, so rows a worker has just moved out of
the eligible set never shift the pages still to come. A row's eligibility
only ends after its transition committed, which makes re-running a failed
run safe.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator, TypeVar
from uuid import UUID

from core.errors import InvalidArgumentError, NotFoundError, SerdeError
from core.models import CursorPaginatedVec, CursorPaginationRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures confined to one invoice; anything else (InternalError) aborts the run
ROW_ERRORS = (InvalidArgumentError, NotFoundError, SerdeError)


@dataclass
class WorkerRunSummary:
    """Counters of one worker run."""

    worker: str
    pages: int = 0
    scanned: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    failed_ids: list[UUID] = field(default_factory=list)

    def record_failure(self, row_id: UUID) -> None:
        self.failed += 1
        self.failed_ids.append(row_id)

    def log(self) -> None:
        logger.info(
            "%s run: %d pages, %d scanned, %d processed, %d skipped, %d failed",
            self.worker, self.pages, self.scanned, self.processed, self.skipped, self.failed,
        )


def iter_pages(
    fetch_page: Callable[[CursorPaginationRequest], CursorPaginatedVec[T]],
    page_size: int,
    summary: WorkerRunSummary | None = None,
) -> Iterator[list[T]]:
    """
    Yield every page of a cursor-paginated listing, first to last.

    Rows a page could not read are counted as failures on the summary and
    never block the pages after them.
    """
    cursor = None
    while True:
        page = fetch_page(CursorPaginationRequest(limit=page_size, cursor=cursor))
        if summary is not None:
            for row_id in page.failed_ids:
                summary.scanned += 1
                summary.record_failure(row_id)
        yield page.items
        if page.next_cursor is None:
            return
        cursor = page.next_cursor
