"""Page-job pipeline: orchestration, workers, dispatch and recovery."""

from .dispatch import Dispatcher, LocalDispatcher, ModalDispatcher
from .orchestrator import Orchestrator
from .reprocess import reprocess_document
from .sweeper import Sweeper
from .worker import PageWorker

__all__ = [
    "Dispatcher",
    "LocalDispatcher",
    "ModalDispatcher",
    "Orchestrator",
    "PageWorker",
    "Sweeper",
    "reprocess_document",
]
