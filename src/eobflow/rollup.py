"""Document rollup decision.

A document's terminal status is a pure function of how many of its page jobs
succeeded, how many are terminal, and how many pages it has.
"""

from typing import NamedTuple, Optional


class RollupDecision(NamedTuple):
    status: str
    error_code: Optional[str]
    error_message: Optional[str]
    refund_all: bool


def decide_rollup(succeeded_count: int, terminal_count: int, total_pages: int) -> Optional[RollupDecision]:
    """Derive the document outcome from page job counts.

    Args:
        succeeded_count: Jobs in status 'succeeded'
        terminal_count: Jobs in status 'succeeded' or 'failed'
        total_pages: Number of pages (and jobs) of the document

    Returns:
        RollupDecision, or None while some jobs are still non-terminal
    """
    if total_pages <= 0 or terminal_count < total_pages:
        return None

    if succeeded_count >= total_pages:
        return RollupDecision("completed", None, None, False)

    if succeeded_count > 0:
        failed = total_pages - succeeded_count
        return RollupDecision(
            "partial_failure",
            "partial_failure",
            f"{succeeded_count} of {total_pages} pages processed. {failed} pages had errors.",
            False,
        )

    return RollupDecision(
        "failed",
        "all_pages_failed",
        f"All {total_pages} pages failed extraction.",
        True,
    )
