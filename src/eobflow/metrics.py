"""Page job timing - latency focused."""

import time
from uuid import UUID

from .models import PageJobMetrics


class MetricsCollector:
    """Collects named timers for one page job run."""

    def __init__(self):
        self._start_times: dict[str, float] = {}
        self.timings: dict[str, float] = {}

    def start_timer(self, name: str) -> None:
        """Start a named timer."""
        self._start_times[name] = time.perf_counter()

    def stop_timer(self, name: str) -> float:
        """Stop a named timer and return elapsed time."""
        if name not in self._start_times:
            return 0.0
        elapsed = time.perf_counter() - self._start_times.pop(name)
        self.timings[name] = self.timings.get(name, 0.0) + elapsed
        return elapsed

    def create_page_metrics(self, job_id: UUID, page_number: int, items_extracted: int) -> PageJobMetrics:
        """Create metrics for a single page job run."""
        download = self.timings.get("download", 0.0)
        extraction = self.timings.get("extraction", 0.0)
        persist = self.timings.get("persist", 0.0)

        return PageJobMetrics(
            job_id=job_id,
            page_number=page_number,
            items_extracted=items_extracted,
            duration_sec=download + extraction + persist,
            download_time_sec=download,
            extraction_time_sec=extraction,
            persist_time_sec=persist,
        )
