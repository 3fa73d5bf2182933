"""Small timing helpers: randomized human-like delays and duration formatting."""

import random
from typing import Optional


def random_delay_ms(low: int, high: int, rng: Optional[random.Random] = None) -> int:
    """Uniform integer delay in ``[low, high]`` milliseconds."""
    rng = rng or random
    return rng.randint(low, high)


def format_clock(milliseconds: float) -> str:
    """Format a duration as ``MM:SS``."""
    total_seconds = int(max(milliseconds, 0) // 1000)
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes:02d}:{seconds:02d}"
