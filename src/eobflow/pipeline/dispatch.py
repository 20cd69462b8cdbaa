"""Worker dispatch abstraction."""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Optional

from ..models import PageJobRef

logger = logging.getLogger(__name__)


class Dispatcher(ABC):
    """Abstract interface for invoking the extraction worker on one page job."""

    @abstractmethod
    def submit(self, job: PageJobRef) -> bool:
        """Fire a worker invocation without waiting for its outcome.

        Args:
            job: Page job reference

        Returns:
            bool: True if the invocation was accepted for execution
        """
        pass

    @abstractmethod
    def run(self, job: PageJobRef) -> dict[str, Any]:
        """Invoke the worker and wait for its result.

        Args:
            job: Page job reference

        Returns:
            dict: Worker result
        """
        pass

    def close(self) -> None:
        """Release dispatcher resources."""


class ModalDispatcher(Dispatcher):
    """Dispatch to the deployed Modal worker function."""

    def __init__(
        self,
        app_name: str,
        function_name: str = "process_page_job",
        accept_timeout_sec: float = 10.0,
    ):
        """Initialize Modal dispatcher.

        Args:
            app_name: Deployed Modal app name
            function_name: Worker function name within the app
            accept_timeout_sec: How long submit() waits for the spawn to be accepted
        """
        self.app_name = app_name
        self.function_name = function_name
        self.accept_timeout_sec = accept_timeout_sec
        self._function = None
        self._pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="modal-dispatch")

    def _worker_function(self):
        if self._function is None:
            import modal

            self._function = modal.Function.from_name(self.app_name, self.function_name)
        return self._function

    def submit(self, job: PageJobRef) -> bool:
        future = self._pool.submit(self._worker_function().spawn, **job.model_dump(mode="json"))
        try:
            call = future.result(timeout=self.accept_timeout_sec)
        except FutureTimeoutError:
            logger.warning(
                f"Dispatch of job {job.job_id} (page {job.page_number}) not confirmed "
                f"within {self.accept_timeout_sec}s"
            )
            return False
        except Exception as e:
            logger.warning(f"Dispatch of job {job.job_id} (page {job.page_number}) failed: {e}")
            return False

        logger.debug(f"Spawned worker for job {job.job_id}: {call.object_id}")
        return True

    def run(self, job: PageJobRef) -> dict[str, Any]:
        return self._worker_function().remote(**job.model_dump(mode="json"))

    def close(self) -> None:
        self._pool.shutdown(wait=False)


class LocalDispatcher(Dispatcher):
    """Run the worker in-process on a thread pool."""

    def __init__(self, handler: Callable[[PageJobRef], dict[str, Any]], max_workers: int = 4):
        """Initialize local dispatcher.

        Args:
            handler: Callable that processes one page job
            max_workers: Thread pool size for submit()
        """
        self.handler = handler
        self._pool: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="page-worker"
        )
        self._futures = []

    def submit(self, job: PageJobRef) -> bool:
        if self._pool is None:
            return False
        self._futures.append(self._pool.submit(self._run_logged, job))
        return True

    def run(self, job: PageJobRef) -> dict[str, Any]:
        return self.handler(job)

    def _run_logged(self, job: PageJobRef) -> dict[str, Any]:
        try:
            return self.handler(job)
        except Exception as e:
            logger.error(f"Local worker for job {job.job_id} raised: {e}", exc_info=True)
            return {"job_id": str(job.job_id), "status": "error", "error": str(e)}

    def wait(self) -> list[dict[str, Any]]:
        """Wait for every submitted job and return their results."""
        results = [future.result() for future in self._futures]
        self._futures = []
        return results

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None
