"""Shared progress callback type for long-running services.

Callbacks receive ``(stage, current, total, item)``: the stage name, the
1-based position within the stage, the stage size, and a display label for
the item being processed.
"""

from collections.abc import Callable

ProgressCallback = Callable[[str, int, int, str], None]


def noop_progress(_stage: str, _current: int, _total: int, _item: str) -> None:
    pass
