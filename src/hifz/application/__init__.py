# Application Package
from .batch_loader import BatchLoader
from .due_review_detector import DueReviewDetector
from .progress_algorithm import ProgressAlgorithm
from .progress_service import ProgressService, summarize_window
from .session_engine import SessionEngine
from .session_orchestrator import SessionHandle, SessionOrchestrator

__all__ = [
    "BatchLoader",
    "DueReviewDetector",
    "ProgressAlgorithm",
    "ProgressService",
    "SessionEngine",
    "SessionHandle",
    "SessionOrchestrator",
    "summarize_window",
]
