from __future__ import annotations
import math
from bisect import bisect_right
from typing import List, Optional, Sequence

from ..timeline import TempoPoint, TimingSeries

BEATS_PER_MEASURE = 4
DEFAULT_SCROLL = 1.0

def beat_length_to_bpm(beat_length: float) -> float:
    if beat_length == 0:
        return math.inf
    return 60000.0 / beat_length

def sv_to_multiplier(beat_length: float) -> float:
    # inherited points store -100 / multiplier
    return 100.0 / (-beat_length)

def ms_to_us(ms: int) -> int:
    return int(ms) * 1000

def active_index(times: Sequence[int], t: float) -> Optional[int]:
    """
    Index of the point active at t: greatest time <= t, the first point when
    t lies before the series, None for an empty series.
    """
    if not times:
        return None
    i = bisect_right(times, t) - 1
    return max(i, 0)

def bpm_at(series: TimingSeries, t: float) -> float:
    i = active_index(series.tempo_times, t)
    if i is None:
        raise ValueError("bpm lookup on an empty tempo series")
    return series.tempos[i].bpm

def scroll_at(series: TimingSeries, t: float) -> float:
    i = active_index(series.scroll_times, t)
    if i is None:
        return DEFAULT_SCROLL
    return series.scrolls[i].multiplier

def measure_length(beat_length: float) -> float:
    return beat_length * BEATS_PER_MEASURE

def measures_in(duration: float, beat_length: float) -> float:
    """
    Measures covered by `duration` ms at `beat_length`. A zero beat length
    makes any nonzero duration infinitely long.
    """
    span = measure_length(beat_length)
    if span == 0:
        return 0.0 if duration == 0 else math.copysign(math.inf, duration)
    return duration / span

def section_offsets(tempos: List[TempoPoint]) -> List[float]:
    """Cumulative measure position at each tempo point, 0.0 at the first one."""
    out: List[float] = []
    pos = 0.0
    for i, tp in enumerate(tempos):
        if i > 0:
            prev = tempos[i - 1]
            pos += measures_in(tp.time - prev.time, prev.beat_length)
        out.append(pos)
    return out

def measure_position(series: TimingSeries, t: float) -> float:
    """
    Fractional measure count at t, integrating the tempo step function from
    the first tempo point. Before the first point the first segment's rate
    is extrapolated backwards, so the result goes negative.
    """
    i = active_index(series.tempo_times, t)
    if i is None:
        raise ValueError("measure position on an empty tempo series")
    tp = series.tempos[i]
    return series.section_offsets[i] + measures_in(t - tp.time, tp.beat_length)
