from __future__ import annotations
import json
import math
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import mido

from .model import NO_BGA, NO_SOUND, ChartModel, Note, NoteKind, TimelineEntry

MAX_MIDI_TEMPO = 0xFFFFFF

# ---------- JSON ----------

def _wav(note: Note) -> int:
    return NO_SOUND if note.wav is None else note.wav

def _note_dict(note: Note) -> Dict[str, Any]:
    d = {
        "kind": note.kind.value,
        "wav": _wav(note),
        "time_us": note.time_us,
        "section": note.section,
    }
    if note.is_long:
        d["ln_type"] = note.ln_type.value
        d["pair"] = note.pair
        d["end"] = note.is_end
    return d

def _entry_dict(tl: TimelineEntry, lanes: int) -> Dict[str, Any]:
    return {
        "time_ms": tl.time,
        "section": tl.measure_position,
        "bpm": tl.bpm,
        "scroll": tl.scroll,
        "section_line": tl.section_line,
        "bga": NO_BGA if tl.bga_id is None else tl.bga_id,
        "bg_notes": [_note_dict(n) for n in tl.bg_notes],
        "notes": [None if n is None else _note_dict(n) for n in tl.lanes(lanes)],
    }

def chart_to_dict(model: ChartModel) -> Dict[str, Any]:
    """Plain-data view of a ChartModel, sentinels restored at the boundary (-2 no sound, -1 no bga)."""
    return {
        "mode": model.mode.hint,
        "players": model.mode.player,
        "scratch_lanes": list(model.mode.scratch_keys),
        "title": model.title,
        "sub_title": model.sub_title,
        "genre": model.genre,
        "artist": model.artist,
        "sub_artist": model.sub_artist,
        "bpm": model.bpm,
        "min_bpm": model.min_bpm,
        "max_bpm": model.max_bpm,
        "play_level": model.play_level,
        "judge_rank": model.judge_rank,
        "judge_rank_type": model.judge_rank_type.value,
        "total": model.total,
        "total_type": model.total_type.value,
        "ln_type": model.ln_type.value,
        "banner": model.banner,
        "stage_file": model.stage_file,
        "back_bmp": model.back_bmp,
        "preview": model.preview,
        "md5": model.md5,
        "sha256": model.sha256,
        "path": str(model.info.path) if model.info.path else None,
        "from_osu": model.from_osu,
        "wav_list": list(model.wav_list),
        "bga_list": list(model.bga_list),
        "total_notes": model.total_notes(),
        "timelines": [_entry_dict(tl, model.mode.key) for tl in model.timelines],
    }

def write_chart_json(model: ChartModel, out_path, indent: Optional[int] = 1):
    data = chart_to_dict(model)
    Path(out_path).write_text(json.dumps(data, ensure_ascii=False, indent=indent), encoding="utf-8")

# ---------- MIDI preview ----------

def _tempo_changes(model: ChartModel) -> List[Tuple[int, float]]:
    """(ms, bpm) wherever the bpm differs from the previous entry; first change pinned to 0 ms."""
    out = [(0, model.bpm)]
    for tl in model.timelines:
        if tl.time <= 0:
            out[0] = (0, tl.bpm)
            continue
        if tl.bpm != out[-1][1]:
            out.append((tl.time, tl.bpm))
    return out

def _midi_tempo(bpm: float) -> int:
    if not math.isfinite(bpm) or bpm <= 0:
        return MAX_MIDI_TEMPO
    return max(1, min(MAX_MIDI_TEMPO, mido.bpm2tempo(bpm)))

def _tempo_map(changes: List[Tuple[int, float]], tpb: int) -> List[Tuple[int, float, float]]:
    """(ms, bpm, tick at ms) for every tempo change, bpm as the file will carry it."""
    out = []
    tick = 0.0
    for i, (ms, bpm) in enumerate(changes):
        bpm = mido.tempo2bpm(_midi_tempo(bpm))
        if i > 0:
            pms, pbpm, ptick = out[-1]
            tick = ptick + (ms - pms) * pbpm * tpb / 60000.0
        out.append((ms, bpm, tick))
    return out

def _ms_to_tick(ms: int, tmap: List[Tuple[int, float, float]], tpb: int) -> int:
    ms = max(0, ms)
    cur = tmap[0]
    for seg in tmap:
        if seg[0] <= ms:
            cur = seg
        else:
            break
    cms, cbpm, ctick = cur
    return int(round(ctick + (ms - cms) * cbpm * tpb / 60000.0))

def _track_name(name: str) -> str:
    # mido stores meta text as latin-1
    return name.encode("latin-1", "replace").decode("latin-1")

def _emit_conductor(track: mido.MidiTrack, tmap, tpb: int):
    track.append(mido.MetaMessage("time_signature", numerator=4, denominator=4, time=0))
    last = 0
    for ms, bpm, _ in tmap:
        tick = _ms_to_tick(ms, tmap, tpb)
        track.append(mido.MetaMessage("set_tempo", tempo=_midi_tempo(bpm), time=tick - last))
        last = tick

def _lane_events(model: ChartModel, tmap, tpb: int, cfg: dict) -> Iterable[Tuple[int, int, str, int]]:
    base = int(cfg.get("base_pitch", 36))
    tap = int(cfg.get("tap_ticks", 60))
    for tl in model.timelines:
        for lane, note in tl.notes.items():
            if note.kind is NoteKind.LONG_TAIL:
                continue
            start = _ms_to_tick(note.time_ms, tmap, tpb)
            pair = model.pair_of(note)
            end = _ms_to_tick(pair.time_ms, tmap, tpb) if pair is not None else start + tap
            pitch = min(127, base + lane)
            yield (start, 1, "on", pitch)
            yield (max(end, start + 1), 0, "off", pitch)   # off first on equal ticks

def write_midi_preview(model: ChartModel, out_path, cfg: Optional[dict] = None):
    """
    Audition file: conductor track with the chart's tempo changes, one note
    track with a pitch per lane (long notes held until their tail).
    """
    cfg = cfg or {}
    tpb = int(cfg.get("ticks_per_beat", 480))
    vel = int(cfg.get("velocity", 100))
    tmap = _tempo_map(_tempo_changes(model), tpb)

    mid = mido.MidiFile(ticks_per_beat=tpb)
    t_con = mido.MidiTrack()
    t_con.append(mido.MetaMessage("track_name", name="Conductor", time=0))
    _emit_conductor(t_con, tmap, tpb)
    mid.tracks.append(t_con)

    mt = mido.MidiTrack()
    mt.append(mido.MetaMessage("track_name", name=_track_name(f"{model.title} {model.sub_title}".strip()), time=0))
    evs = sorted(_lane_events(model, tmap, tpb, cfg), key=lambda x: (x[0], x[1]))
    last = 0
    for tick, _, kind, pitch in evs:
        delta = tick - last
        last = tick
        if kind == "on":
            mt.append(mido.Message("note_on", note=pitch, velocity=vel, channel=0, time=delta))
        else:
            mt.append(mido.Message("note_off", note=pitch, velocity=0, channel=0, time=delta))
    mid.tracks.append(mt)
    mid.save(str(out_path))
    return mid
