# src/osu2bms/analyze.py
from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from .errors import FatalDecodeError, MalformedRecord
from .timeline import (
    OsuAnalysis, OsuEvent, RawTimingPoint, HitObject,
)
from .util.digest import Digests, digest_file

log = logging.getLogger(__name__)

DEFAULT_ENCODING = "cp932"
# second field is a layer name, not a time
_STORYBOARD_OBJECTS = ("Sprite", "Animation", "4", "6")

@dataclass
class DecodedChart:
    path: Optional[Path]
    text: str
    digests: Digests

def read_chart(path, encoding: str = DEFAULT_ENCODING, errors: str = "replace") -> DecodedChart:
    """Read a chart once: both digests come from the same bytes that get decoded."""
    p = Path(path)
    try:
        data, digests = digest_file(p)
    except OSError as e:
        raise FatalDecodeError(f"cannot read {p}: {e}") from e
    except ValueError as e:
        # hashlib refuses e.g. md5 on FIPS builds
        raise FatalDecodeError(f"digest unavailable: {e}") from e
    try:
        text = data.decode(encoding, errors=errors)
    except (LookupError, UnicodeDecodeError) as e:
        raise FatalDecodeError(f"cannot decode {p} as {encoding}: {e}") from e
    return DecodedChart(path=p, text=text, digests=digests)

# ---------- record parsers ----------

def _kv(line: str):
    if ":" not in line:
        return None
    k, v = line.split(":", 1)
    return k.strip(), v.strip()

def _int(s: str) -> int:
    # osu! writes some integer columns as "1000.0" in older files
    return int(float(s))

def parse_event(line: str) -> Optional[OsuEvent]:
    """None for lines that are not timed events (storyboard objects and their command bodies)."""
    if line.startswith((" ", "_")):
        return None
    parts = [p.strip() for p in line.split(",")]
    if len(parts) < 2 or parts[0] in _STORYBOARD_OBJECTS:
        return None
    try:
        start = _int(parts[1])
    except ValueError as e:
        raise MalformedRecord(f"event start time {parts[1]!r}") from e
    return OsuEvent(event_type=parts[0], start_time=start, params=parts[2:])

def parse_timing_point(line: str) -> RawTimingPoint:
    parts = [p.strip() for p in line.split(",")]
    if len(parts) < 2:
        raise MalformedRecord(f"timing point {line!r}")
    try:
        time = float(parts[0])
        beat_length = float(parts[1])
        meter = _int(parts[2]) if len(parts) > 2 else 4
        sample_set = _int(parts[3]) if len(parts) > 3 else 0
        sample_index = _int(parts[4]) if len(parts) > 4 else 0
        volume = _int(parts[5]) if len(parts) > 5 else 100
        defines_tempo = (parts[6] == "1") if len(parts) > 6 else beat_length >= 0
        effects = _int(parts[7]) if len(parts) > 7 else 0
    except ValueError as e:
        raise MalformedRecord(f"timing point {line!r}") from e
    if not math.isfinite(time) or not math.isfinite(beat_length):
        raise MalformedRecord(f"timing point {line!r}: non-finite value")
    if not defines_tempo and beat_length == 0:
        raise MalformedRecord(f"timing point {line!r}: zero scroll beat length")
    return RawTimingPoint(time, beat_length, meter, sample_set, sample_index, volume, defines_tempo, effects)

def parse_hit_object(line: str) -> HitObject:
    parts = [p.strip() for p in line.split(",")]
    if len(parts) < 4:
        raise MalformedRecord(f"hit object {line!r}")
    try:
        x = _int(parts[0]); y = _int(parts[1])
        time = _int(parts[2]); type_flags = _int(parts[3])
        hit_sound = _int(parts[4]) if len(parts) > 4 and parts[4] else 0
    except ValueError as e:
        raise MalformedRecord(f"hit object {line!r}") from e
    params = parts[5].split(":") if len(parts) > 5 else []
    return HitObject(x=x, y=y, time=time, type_flags=type_flags, hit_sound=hit_sound, object_params=params)

# ---------- section handlers ----------

def _general(a: OsuAnalysis, line: str):
    kv = _kv(line)
    if kv is None:
        return
    k, v = kv
    if k == "AudioFilename":
        a.general.audio_filename = v
    elif k == "Mode":
        try:
            a.general.mode = _int(v)
        except ValueError:
            log.warning("unreadable Mode %r, keeping %d", v, a.general.mode)

def _metadata(a: OsuAnalysis, line: str):
    kv = _kv(line)
    if kv is None:
        return
    k, v = kv
    if k == "Title":     a.metadata.title = v
    elif k == "Version": a.metadata.version = v
    elif k == "Artist":  a.metadata.artist = v
    elif k == "Creator": a.metadata.creator = v

def _difficulty(a: OsuAnalysis, line: str):
    kv = _kv(line)
    if kv is None or kv[0] != "CircleSize":
        return
    try:
        a.difficulty.circle_size = float(kv[1])
    except ValueError:
        log.warning("unreadable CircleSize %r", kv[1])

def _events(a: OsuAnalysis, line: str):
    ev = parse_event(line)
    if ev is not None:
        a.events.append(ev)

def _timing_points(a: OsuAnalysis, line: str):
    a.timing_points.append(parse_timing_point(line))

def _hit_objects(a: OsuAnalysis, line: str):
    a.hit_objects.append(parse_hit_object(line))

_HANDLERS: Dict[str, Callable[[OsuAnalysis, str], None]] = {
    "General": _general,
    "Metadata": _metadata,
    "Difficulty": _difficulty,
    "Events": _events,
    "TimingPoints": _timing_points,
    "HitObjects": _hit_objects,
}

def analyze_osu(text: str) -> OsuAnalysis:
    """
    Tokenize .osu text into raw records. Unknown sections are ignored,
    broken records are logged and skipped.
    """
    analysis = OsuAnalysis()
    handler = None
    section = None
    for lineno, raw in enumerate(text.splitlines(), 1):
        line = raw.rstrip()
        stripped = line.strip()
        if not stripped or stripped.startswith("//"):
            continue
        if stripped.startswith("[") and stripped.endswith("]"):
            section = stripped[1:-1]
            handler = _HANDLERS.get(section)
            continue
        if handler is None:
            continue
        # events keep their leading whitespace, it marks storyboard command bodies
        payload = line if section == "Events" else stripped
        try:
            handler(analysis, payload)
        except MalformedRecord as e:
            log.warning("line %d [%s]: skipped malformed record: %s", lineno, section, e)
    return analysis

def analyze_file(path, encoding: str = DEFAULT_ENCODING, errors: str = "replace"):
    """read_chart + analyze_osu. Returns (DecodedChart, OsuAnalysis)."""
    decoded = read_chart(path, encoding=encoding, errors=errors)
    return decoded, analyze_osu(decoded.text)
