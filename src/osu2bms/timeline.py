from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import List

DEFAULT_OFFSET_MS = 38          # alignment correction applied to every chart time
SECTION_LINE_LIMIT = 10000      # above this many measures per segment only the boundaries are marked
MANIA_MODE = 3
HOLD_FLAG = 0x80

# --- Pass 1: raw records, as read from the .osu file ---

@dataclass
class GeneralSection:
    audio_filename: str = ""
    mode: int = 0

@dataclass
class MetadataSection:
    title: str = ""
    version: str = ""
    artist: str = ""
    creator: str = ""

@dataclass
class DifficultySection:
    circle_size: float = 0.0   # key count for mania

    @property
    def key_count(self) -> int:
        return int(self.circle_size)

@dataclass
class OsuEvent:
    event_type: str            # "0" | "1" | "Video" | "5" | "Sample" | ...
    start_time: int
    params: List[str] = field(default_factory=list)

@dataclass
class RawTimingPoint:
    time: float
    beat_length: float         # ms per beat; negative on inherited points (SV)
    meter: int = 4
    sample_set: int = 0
    sample_index: int = 0
    volume: int = 100
    defines_tempo: bool = True
    effects: int = 0

@dataclass
class HitObject:
    x: int
    y: int
    time: int
    type_flags: int
    hit_sound: int = 0
    object_params: List[str] = field(default_factory=list)

    @property
    def is_hold(self) -> bool:
        return (self.type_flags & HOLD_FLAG) > 0

@dataclass
class OsuAnalysis:
    general: GeneralSection = field(default_factory=GeneralSection)
    metadata: MetadataSection = field(default_factory=MetadataSection)
    difficulty: DifficultySection = field(default_factory=DifficultySection)
    events: List[OsuEvent] = field(default_factory=list)
    timing_points: List[RawTimingPoint] = field(default_factory=list)
    hit_objects: List[HitObject] = field(default_factory=list)

# --- Pass 2: normalized timing ---

@dataclass
class TempoPoint:
    time: int
    beat_length: float

    @property
    def bpm(self) -> float:
        if self.beat_length == 0:
            return math.inf
        return 60000.0 / self.beat_length

@dataclass
class ScrollPoint:
    time: int
    multiplier: float = 1.0

@dataclass
class TimingSeries:
    """
    Two strictly time-ordered series built once from the raw timing points.
    The *_times / section_offsets lists are lookup tables kept in step with
    the point lists (filled by process.build_timing_series).
    """
    tempos: List[TempoPoint] = field(default_factory=list)
    scrolls: List[ScrollPoint] = field(default_factory=list)
    tempo_times: List[int] = field(default_factory=list)
    scroll_times: List[int] = field(default_factory=list)
    section_offsets: List[float] = field(default_factory=list)  # measure position at each tempo point
