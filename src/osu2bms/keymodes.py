from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .model import Mode

_ = None  # unused physical slot

@dataclass(frozen=True)
class KeyLayout:
    key_count: int
    mode: Mode
    # physical column -> logical lane; None marks a slot the mode does not use
    mapping: Tuple[Optional[int], ...]

    def lane_for(self, column: int) -> Optional[int]:
        if 0 <= column < len(self.mapping):
            return self.mapping[column]
        return None

KEY_LAYOUTS: Dict[int, KeyLayout] = {
    4:  KeyLayout(4,  Mode.BEAT_7K,  (0, 2, 4, 6, _, _, _, _)),
    5:  KeyLayout(5,  Mode.BEAT_5K,  (0, 1, 2, 3, 4, _)),
    6:  KeyLayout(6,  Mode.BEAT_7K,  (0, 1, 2, 4, 5, 6, _, _)),
    7:  KeyLayout(7,  Mode.BEAT_7K,  (0, 1, 2, 3, 4, 5, 6, _)),
    8:  KeyLayout(8,  Mode.BEAT_7K,  (7, 0, 1, 2, 3, 4, 5, 6)),   # 8th column is the scratch
    9:  KeyLayout(9,  Mode.POPN_9K,  (0, 1, 2, 3, 4, 5, 6, 7, 8)),
    10: KeyLayout(10, Mode.BEAT_10K, (0, 1, 2, 3, 4, 6, 7, 8, 9, 10, _, _)),
    12: KeyLayout(12, Mode.BEAT_10K, (5, 0, 1, 2, 3, 4, 6, 7, 8, 9, 10, 11)),
    14: KeyLayout(14, Mode.BEAT_14K, (0, 1, 2, 3, 4, 5, 6, 8, 9, 10, 11, 12, 13, 14, _, _)),
    16: KeyLayout(16, Mode.BEAT_14K, (7, 0, 1, 2, 3, 4, 5, 6, 8, 9, 10, 11, 12, 13, 14, 15)),
}

def layout_for(key_count: int) -> Optional[KeyLayout]:
    return KEY_LAYOUTS.get(key_count)

def physical_column(x: float, key_count: int) -> int:
    """osu! mania column from the x coordinate (0..512), clamped to the playfield."""
    col = int(x * key_count // 512)
    return max(0, min(key_count - 1, col))
