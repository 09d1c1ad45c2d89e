import time


def now_ms() -> int:
    return int(time.time() * 1000)


def ms_to_sec(ms) -> float:
    """Milliseconds (int/float/str) to seconds, clamped to >= 0."""
    try:
        return max(0.0, float(ms) / 1000.0)
    except (TypeError, ValueError):
        return 0.0
