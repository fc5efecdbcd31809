"""
Progress observers.

A tracker is any callable ``tracker(position, case_id)``. The orchestrator
calls it once per completed case, after the case's controls are fixed, so a
tracker can never change what gets matched.
"""

from typing import Any, Callable, Optional

from tqdm import tqdm

ProgressTracker = Callable[[int, Any], None]


class ConsoleTracker:
    """Console progress bar, one tick per matched case."""

    def __init__(self, total: int, desc: str = "Matching cases"):
        self.bar = tqdm(total=total, desc=desc, unit="case")

    def __call__(self, position: int, case_id: Any) -> None:
        self.bar.update(1)

    def close(self) -> None:
        self.bar.close()


def resolve_tracker(track: bool, tracker: Optional[ProgressTracker], total: int) -> Optional[ProgressTracker]:
    """Tracker to use for a run, or None when progress is not reported."""
    if not track:
        return None
    if tracker is not None:
        return tracker
    return ConsoleTracker(total)
