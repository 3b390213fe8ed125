import time
from typing import Callable, Optional, Tuple

Clock = Callable[[], int]


def current_time_ms() -> int:
    return int(time.time() * 1000)


def normalize_time_range(
    from_ms: Optional[int] = None,
    to_ms: Optional[int] = None,
    now: Optional[Clock] = None
) -> Tuple[int, int]:
    """
    Resolves an optional window into (start_time, end_time) in ms.
    Start defaults to epoch, end defaults to now().
    """
    start_time = from_ms if from_ms is not None else 0
    if to_ms is not None:
        end_time = to_ms
    else:
        end_time = (now or current_time_ms)()
    return start_time, end_time
