"""Invoice lifecycle workers. Each run walks its eligible rows page by page."""

from core.workers.base import WorkerRunSummary
from core.workers.draft_worker import DraftWorker
from core.workers.price_worker import PriceWorker
from core.workers.pending_status_worker import PendingStatusWorker
from core.workers.finalize_worker import FinalizeWorker
from core.workers.issue_worker import IssueWorker

__all__ = [
    "WorkerRunSummary",
    "DraftWorker",
    "PriceWorker",
    "PendingStatusWorker",
    "FinalizeWorker",
    "IssueWorker",
]
