from __future__ import annotations
import logging
from typing import Dict, Iterator, List, Optional, Tuple

from .analyze import analyze_file
from .errors import MalformedRecord, UnsupportedInput
from .keymodes import KeyLayout, layout_for, physical_column
from .model import (
    ChartInformation, ChartModel, LongNoteDef, Note, NoteKind, TimelineEntry,
)
from .timeline import (
    DEFAULT_OFFSET_MS, MANIA_MODE, SECTION_LINE_LIMIT,
    HitObject, OsuAnalysis, OsuEvent, RawTimingPoint,
    ScrollPoint, TempoPoint, TimingSeries,
)
from .util.digest import Digests
from .util.time import (
    beat_length_to_bpm, bpm_at, measure_length, measure_position, measures_in,
    ms_to_us, scroll_at, section_offsets, sv_to_multiplier,
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Timing series
# ---------------------------------------------------------------------------

def build_timing_series(raw: List[RawTimingPoint], offset: int = DEFAULT_OFFSET_MS) -> TimingSeries:
    """
    Split raw timing points into tempo and scroll series.

    Every tempo point implies a 1.0x scroll point at its time, unless the next
    raw point shares the timestamp (it overrides it). A scroll point landing on
    the timestamp of the last scroll point replaces its multiplier. Tempo points
    sharing a timestamp collapse to the later one.
    """
    raw = sorted(raw, key=lambda p: p.time)  # stable: equal times keep file order
    series = TimingSeries()
    tempos = series.tempos
    scrolls = series.scrolls
    last = len(raw) - 1
    for i, point in enumerate(raw):
        t = point.time + offset
        ms = int(t)
        if point.defines_tempo:
            if tempos and tempos[-1].time == ms:
                tempos[-1] = TempoPoint(ms, point.beat_length)
            else:
                tempos.append(TempoPoint(ms, point.beat_length))
            if i == last or raw[i + 1].time != point.time:
                if scrolls and scrolls[-1].time == ms:
                    scrolls[-1].multiplier = 1.0
                else:
                    scrolls.append(ScrollPoint(ms, 1.0))
        else:
            mult = sv_to_multiplier(point.beat_length)
            if scrolls and scrolls[-1].time == ms:
                scrolls[-1].multiplier = mult
                continue
            scrolls.append(ScrollPoint(ms, mult))

    series.tempo_times = [tp.time for tp in tempos]
    series.scroll_times = [sp.time for sp in scrolls]
    series.section_offsets = section_offsets(tempos)
    return series

# ---------------------------------------------------------------------------
# Timeline index
# ---------------------------------------------------------------------------

class TimelineIndex:
    """
    Sparse ms -> TimelineEntry map. Entries are created on first touch and
    seeded from the timing series; producers then overwrite bpm/scroll in
    place, the last producer to visit a millisecond wins.
    Also owns the note arena; long-note ends refer to each other by slot.
    """

    def __init__(self, series: TimingSeries, ln_type: LongNoteDef = LongNoteDef.UNDEFINED):
        if not series.tempos:
            raise UnsupportedInput("chart has no tempo points")
        self.series = series
        self.ln_type = ln_type
        self.entries: Dict[int, TimelineEntry] = {}
        self.notes: List[Note] = []

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, time: int) -> bool:
        return time in self.entries

    def __iter__(self) -> Iterator[TimelineEntry]:
        for t in sorted(self.entries):
            yield self.entries[t]

    def get(self, time: int) -> Optional[TimelineEntry]:
        return self.entries.get(time)

    def entry_at(self, time: int, position: Optional[float] = None) -> TimelineEntry:
        """
        Existing entry for this millisecond, or a new one. An explicit position
        is written onto the entry either way.
        """
        tl = self.entries.get(time)
        if tl is None:
            tl = TimelineEntry(
                time=time,
                measure_position=measure_position(self.series, time) if position is None else position,
                bpm=bpm_at(self.series, time),
                scroll=scroll_at(self.series, time),
            )
            self.entries[time] = tl
        elif position is not None:
            tl.move_to(position)
        return tl

    def refresh(self, tl: TimelineEntry) -> TimelineEntry:
        tl.bpm = bpm_at(self.series, tl.time)
        tl.scroll = scroll_at(self.series, tl.time)
        return tl

    def new_note(self, kind: NoteKind, time_ms: int, wav: Optional[int] = None) -> Note:
        note = Note(kind=kind, time_us=ms_to_us(time_ms), wav=wav, index=len(self.notes))
        if kind is not NoteKind.NORMAL:
            note.ln_type = self.ln_type
        self.notes.append(note)
        return note

    def connect_pair(self, head: Note, tail: Note) -> None:
        head.pair = tail.index
        tail.pair = head.index
        merged = head.ln_type if head.ln_type is not LongNoteDef.UNDEFINED else tail.ln_type
        head.ln_type = merged
        tail.ln_type = merged

    def pair_of(self, note: Note) -> Optional[Note]:
        return None if note.pair is None else self.notes[note.pair]

    def entries_sorted(self) -> List[TimelineEntry]:
        return list(self)

# ---------------------------------------------------------------------------
# Producers (applied in this order by build_timeline)
# ---------------------------------------------------------------------------

def _strip_quotes(s: str) -> str:
    return s.replace('"', "")

def collect_events(events: List[OsuEvent], offset: int) -> Tuple[Optional[str], List[Tuple[int, str]], List[Tuple[int, str]]]:
    """
    Returns (background image, [(time, video)], [(time, sample)]) with the
    offset applied. Events missing their file parameter are skipped.
    """
    background = None
    videos: List[Tuple[int, str]] = []
    samples: List[Tuple[int, str]] = []
    for ev in events:
        try:
            if ev.event_type == "0":
                background = _strip_quotes(_param(ev, 0))
            elif ev.event_type in ("1", "Video"):
                videos.append((ev.start_time + offset, _strip_quotes(_param(ev, 0))))
            elif ev.event_type in ("5", "Sample"):
                samples.append((ev.start_time + offset, _strip_quotes(_param(ev, 1))))
        except MalformedRecord as e:
            log.warning("skipped event %s@%d: %s", ev.event_type, ev.start_time, e)
    return background, videos, samples

def _param(ev: OsuEvent, i: int) -> str:
    if len(ev.params) <= i:
        raise MalformedRecord(f"missing parameter #{i}")
    return ev.params[i]

def place_music_start(index: TimelineIndex, background_bga: int) -> TimelineEntry:
    tl = index.refresh(index.entry_at(0))
    tl.add_background_note(index.new_note(NoteKind.NORMAL, 0, wav=0))
    tl.bga_id = background_bga
    return tl

def place_videos(index: TimelineIndex, videos: List[Tuple[int, str]]):
    for i, (time, _name) in enumerate(videos):
        tl = index.refresh(index.entry_at(time))
        tl.bga_id = i

def place_samples(index: TimelineIndex, samples: List[Tuple[int, str]]):
    for i, (time, _name) in enumerate(samples):
        tl = index.entry_at(time)
        tl.add_background_note(index.new_note(NoteKind.NORMAL, time, wav=i + 1))
        index.refresh(tl)

def place_tempo_points(index: TimelineIndex):
    for tp in index.series.tempos:
        tl = index.entry_at(tp.time)
        tl.bpm = beat_length_to_bpm(tp.beat_length)
        tl.scroll = scroll_at(index.series, tp.time)

def place_scroll_points(index: TimelineIndex):
    for sp in index.series.scrolls:
        tl = index.entry_at(sp.time)
        tl.scroll = sp.multiplier
        tl.bpm = bpm_at(index.series, sp.time)

def place_section_lines(index: TimelineIndex, last_note_time: int, limit: int = SECTION_LINE_LIMIT) -> int:
    """
    Mark measure boundaries for every tempo segment. The last segment runs to
    the final hit object. A segment spanning more than `limit` measures only
    gets lines at its two ends; a zero beat length spans infinitely many.
    Returns the number of lines placed.
    """
    series = index.series
    tempos = series.tempos
    placed = 0
    for i, tp in enumerate(tempos):
        begin = tp.time
        end = tempos[i + 1].time if i < len(tempos) - 1 else last_note_time
        begin_pos = series.section_offsets[i]
        span = measure_length(tp.beat_length)
        total = measures_in(end - begin, tp.beat_length)
        bpm = beat_length_to_bpm(tp.beat_length)
        if total > limit:
            log.debug("segment %d..%d spans %.0f measures, marking ends only", begin, end, total)
            for time, pos in ((begin, begin_pos), (end, begin_pos + total)):
                tl = index.entry_at(time, pos)
                tl.bpm = bpm
                tl.scroll = scroll_at(series, time)
                tl.section_line = True
                placed += 1
            continue
        for section in range(int(total) + 1):
            time = begin + int(section * span)
            tl = index.entry_at(time, begin_pos + section)
            tl.bpm = bpm
            tl.scroll = scroll_at(series, time)
            tl.section_line = True
            placed += 1
    return placed

def _tail_time(obj: HitObject) -> int:
    if not obj.object_params:
        raise MalformedRecord("hold note without end time")
    try:
        return int(obj.object_params[0])
    except ValueError as e:
        raise MalformedRecord(f"hold end time {obj.object_params[0]!r}") from e

def place_hit_object(index: TimelineIndex, obj: HitObject, layout: KeyLayout, offset: int) -> Optional[Note]:
    """
    Put one hit object on its lane. Holds become a paired head/tail, zero or
    negative length holds degrade to a normal note. Returns the (head) note,
    None when the record was skipped.
    """
    if obj.time < 0:
        return None
    head_time = obj.time + offset
    lane = layout.lane_for(physical_column(obj.x, layout.key_count))
    tail_time = _tail_time(obj) + offset if obj.is_hold else None

    tl = index.refresh(index.entry_at(head_time))
    if tail_time is None or tail_time <= head_time:
        note = index.new_note(NoteKind.NORMAL, head_time)
        tl.set_note(lane, note)
        return note

    head = index.new_note(NoteKind.LONG_HEAD, head_time)
    tl.set_note(lane, head)
    tail = index.new_note(NoteKind.LONG_TAIL, tail_time)
    index.refresh(index.entry_at(tail_time)).set_note(lane, tail)
    index.connect_pair(head, tail)
    return head

def place_hit_objects(index: TimelineIndex, objects: List[HitObject], layout: KeyLayout, offset: int) -> int:
    placed = 0
    for obj in objects:
        try:
            if place_hit_object(index, obj, layout, offset) is not None:
                placed += 1
        except MalformedRecord as e:
            log.warning("skipped hit object at %d: %s", obj.time, e)
    return placed

# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def _check_supported(analysis: OsuAnalysis) -> KeyLayout:
    if not analysis.timing_points or not analysis.hit_objects:
        raise UnsupportedInput("no timing points or no hit objects")
    if analysis.general.mode != MANIA_MODE:
        raise UnsupportedInput(f"mode {analysis.general.mode} is not mania")
    layout = layout_for(analysis.difficulty.key_count)
    if layout is None:
        raise UnsupportedInput(f"unsupported key count {analysis.difficulty.key_count}")
    return layout

def build_timeline(analysis: OsuAnalysis, layout: KeyLayout,
                   cfg: dict) -> Tuple[TimelineIndex, List[str], List[str], Optional[str]]:
    """Run every producer against a fresh index. Returns (index, wav_list, bga_list, background)."""
    offset = int(cfg.get("offset_ms", DEFAULT_OFFSET_MS))
    limit = int(cfg.get("section_line_limit", SECTION_LINE_LIMIT))
    ln_type = _ln_type(cfg.get("ln_type"))
    series = build_timing_series(analysis.timing_points, offset)
    index = TimelineIndex(series, ln_type)

    background, videos, samples = collect_events(analysis.events, offset)
    wav_list = [analysis.general.audio_filename] + [name for _, name in samples]
    bga_list = [name for _, name in videos] + [background or ""]

    place_music_start(index, len(bga_list) - 1)
    place_videos(index, videos)
    place_samples(index, samples)
    place_tempo_points(index)
    place_scroll_points(index)
    place_section_lines(index, analysis.hit_objects[-1].time + offset, limit)
    place_hit_objects(index, analysis.hit_objects, layout, offset)
    return index, wav_list, bga_list, background

def _ln_type(value) -> LongNoteDef:
    if isinstance(value, LongNoteDef):
        return value
    try:
        return LongNoteDef(str(value or "undefined").lower())
    except ValueError:
        log.warning("unknown ln_type %r, using undefined", value)
        return LongNoteDef.UNDEFINED

def build_chart(analysis: OsuAnalysis, digests: Digests, path=None, cfg: Optional[dict] = None) -> ChartModel:
    """
    Convert tokenized .osu content into a ChartModel.
    Raises UnsupportedInput when the chart cannot be converted.
    """
    cfg = cfg or {}
    layout = _check_supported(analysis)
    index, wav_list, bga_list, background = build_timeline(analysis, layout, cfg)
    md = analysis.metadata
    return ChartModel(
        mode=layout.mode,
        title=md.title,
        sub_title=f"[{md.version}]",
        genre=f"{layout.key_count}K",
        artist=md.artist,
        sub_artist=md.creator,
        bpm=bpm_at(index.series, 0),
        md5=digests.md5,
        sha256=digests.sha256,
        info=ChartInformation(path=path, ln_type=index.ln_type),
        timelines=index.entries_sorted(),
        notes=index.notes,
        wav_list=wav_list,
        bga_list=bga_list,
        stage_file=background or "",
        back_bmp=background or "",
        preview=analysis.general.audio_filename,
        judge_rank=int(cfg.get("judge_rank", 3)),
        ln_type=index.ln_type,
    )

def convert_file(path, cfg: Optional[dict] = None) -> Optional[ChartModel]:
    """
    File-level entry point. None when the chart is not convertible;
    FatalDecodeError propagates.
    """
    cfg = cfg or {}
    decoded, analysis = analyze_file(
        path,
        encoding=cfg.get("encoding", "cp932"),
        errors=cfg.get("encoding_errors", "replace"),
    )
    try:
        return build_chart(analysis, decoded.digests, decoded.path, cfg)
    except UnsupportedInput as e:
        log.info("no chart for %s: %s", path, e)
        return None
