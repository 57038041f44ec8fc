from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

NO_SOUND = -2     # sentinel the playback engine expects for "no keysound"
NO_BGA = -1


class Mode(Enum):
    # (id, hint, player, lane count, scratch lanes)
    BEAT_5K = (5, "beat-5k", 1, 6, (5,))
    BEAT_7K = (7, "beat-7k", 1, 8, (7,))
    BEAT_10K = (11, "beat-10k", 2, 12, (5, 11))
    BEAT_14K = (14, "beat-14k", 2, 16, (7, 15))
    POPN_5K = (9, "popn-5k", 1, 5, ())
    POPN_9K = (9, "popn-9k", 1, 9, ())
    KEYBOARD_24K = (25, "keyboard-24k", 1, 26, (24, 25))
    KEYBOARD_24K_DOUBLE = (50, "keyboard-24k-double", 2, 52, (24, 25, 50, 51))

    def __init__(self, mode_id: int, hint: str, player: int, key: int, scratch_keys: Tuple[int, ...]):
        self.mode_id = mode_id
        self.hint = hint
        self.player = player
        self.key = key
        self.scratch_keys = scratch_keys


class JudgeRankType(Enum):
    BMS_RANK = "bms_rank"
    BMS_DEFEXRANK = "bms_defexrank"
    BMSON_JUDGERANK = "bmson_judgerank"


class TotalType(Enum):
    BMS = "bms"
    BMSON = "bmson"


class LongNoteDef(Enum):
    UNDEFINED = "undefined"
    LONG_NOTE = "long_note"
    CHARGE_NOTE = "charge_note"
    HELL_CHARGE_NOTE = "hell_charge_note"


class NoteKind(Enum):
    NORMAL = "normal"
    LONG_HEAD = "long_head"
    LONG_TAIL = "long_tail"


@dataclass
class Note:
    kind: NoteKind
    time_us: int
    wav: Optional[int] = None      # None = no keysound
    volume: int = 0
    section: float = 0.0
    index: int = -1                # slot in the owning arena
    pair: Optional[int] = None     # arena slot of the other long-note end
    ln_type: LongNoteDef = LongNoteDef.UNDEFINED

    @property
    def is_long(self) -> bool:
        return self.kind is not NoteKind.NORMAL

    @property
    def is_end(self) -> bool:
        return self.kind is NoteKind.LONG_TAIL

    @property
    def time_ms(self) -> int:
        return self.time_us // 1000


@dataclass
class TimelineEntry:
    time: int                      # ms, immutable once created
    measure_position: float
    bpm: float
    scroll: float = 1.0
    section_line: bool = False
    bga_id: Optional[int] = None
    bg_notes: List[Note] = field(default_factory=list)
    notes: Dict[int, Note] = field(default_factory=dict)   # logical lane -> note

    @property
    def time_us(self) -> int:
        return self.time * 1000

    def move_to(self, position: float) -> None:
        """Set the measure position, carrying any notes already placed here along."""
        self.measure_position = position
        for note in self.bg_notes:
            note.section = position
        for note in self.notes.values():
            note.section = position

    def set_note(self, lane: int, note: Note) -> None:
        note.section = self.measure_position
        note.time_us = self.time_us
        self.notes[lane] = note

    def add_background_note(self, note: Note) -> None:
        note.section = self.measure_position
        note.time_us = self.time_us
        self.bg_notes.append(note)

    def lanes(self, key: int) -> List[Optional[Note]]:
        return [self.notes.get(i) for i in range(key)]


@dataclass
class ChartInformation:
    path: Optional[Path]
    ln_type: LongNoteDef = LongNoteDef.UNDEFINED


@dataclass
class ChartModel:
    mode: Mode
    title: str
    sub_title: str
    genre: str
    artist: str
    sub_artist: str
    bpm: float
    md5: str
    sha256: str
    info: ChartInformation
    timelines: List[TimelineEntry] = field(default_factory=list)
    notes: List[Note] = field(default_factory=list)     # arena, indexed by Note.index
    wav_list: List[str] = field(default_factory=list)
    bga_list: List[str] = field(default_factory=list)
    banner: str = ""
    stage_file: str = ""
    back_bmp: str = ""
    preview: str = ""
    play_level: str = ""
    judge_rank: int = 3
    judge_rank_type: JudgeRankType = JudgeRankType.BMS_RANK
    total: float = 0.0
    total_type: TotalType = TotalType.BMS
    ln_type: LongNoteDef = LongNoteDef.UNDEFINED
    from_osu: bool = True

    @property
    def min_bpm(self) -> float:
        return min([self.bpm] + [tl.bpm for tl in self.timelines])

    @property
    def max_bpm(self) -> float:
        return max([self.bpm] + [tl.bpm for tl in self.timelines])

    def pair_of(self, note: Note) -> Optional[Note]:
        if note.pair is None:
            return None
        return self.notes[note.pair]

    def total_notes(self) -> int:
        """Playable objects; a long note counts once (at its head)."""
        n = 0
        for tl in self.timelines:
            for note in tl.notes.values():
                if note.kind is not NoteKind.LONG_TAIL:
                    n += 1
        return n
