"""
Tests for the timeline index, its producers, section lines and note placement.
"""
import logging
import math

import pytest

from osu2bms.analyze import parse_hit_object
from osu2bms.errors import UnsupportedInput
from osu2bms.keymodes import KEY_LAYOUTS, layout_for, physical_column
from osu2bms.model import Mode, NoteKind
from osu2bms.process import (
    TimelineIndex, build_timing_series, collect_events, place_hit_object,
    place_hit_objects, place_music_start, place_samples, place_scroll_points,
    place_section_lines, place_tempo_points, place_videos,
)
from osu2bms.timeline import OsuEvent, RawTimingPoint


def tempo(t, bl=500.0):
    return RawTimingPoint(time=t, beat_length=bl, defines_tempo=True)


def sv(t, mult):
    return RawTimingPoint(time=t, beat_length=-100.0 / mult, defines_tempo=False)


def make_index(*raw):
    return TimelineIndex(build_timing_series(list(raw) or [tempo(0)], offset=0))


def hit(x, t, end=None):
    if end is None:
        return parse_hit_object(f"{x},192,{t},1,0,0:0:0:0:")
    return parse_hit_object(f"{x},192,{t},128,0,{end}:0:0:0:0:")


# =============================================================================
# TimelineIndex
# =============================================================================

class TestTimelineIndex:
    def test_lazy_creation_is_seeded(self):
        index = make_index(tempo(0, 500), sv(1000, 2.0))
        tl = index.entry_at(3000)
        assert tl.time == 3000
        assert tl.bpm == pytest.approx(120.0)
        assert tl.scroll == pytest.approx(2.0)
        assert tl.measure_position == pytest.approx(1.5)
        assert not tl.section_line
        assert tl.notes == {} and tl.bg_notes == []

    def test_same_millisecond_same_entry(self):
        index = make_index()
        assert index.entry_at(500) is index.entry_at(500)
        assert len(index) == 1

    def test_explicit_position_overwrites(self):
        index = make_index()
        index.entry_at(500)
        assert index.entry_at(500, 7.0).measure_position == 7.0

    def test_ascending_iteration(self):
        index = make_index()
        for t in (900, 5, 300, -20):
            index.entry_at(t)
        assert [tl.time for tl in index] == [-20, 5, 300, 900]

    def test_requires_tempo(self):
        with pytest.raises(UnsupportedInput):
            TimelineIndex(build_timing_series([sv(0, 2.0)], offset=0))


# =============================================================================
# Producers
# =============================================================================

class TestBackgroundProducers:
    def test_events_are_split_and_shifted(self):
        events = [
            OsuEvent("0", 0, ['"bg.png"', "0", "0"]),
            OsuEvent("Video", 100, ['"mv.mp4"']),
            OsuEvent("5", 200, ["0", '"a.wav"', "70"]),
            OsuEvent("Sample", 300, ["0"]),       # no file, skipped
            OsuEvent("2", 400, ["500"]),          # break, ignored
        ]
        bg, videos, samples = collect_events(events, offset=38)
        assert bg == "bg.png"
        assert videos == [(138, "mv.mp4")]
        assert samples == [(238, "a.wav")]

    def test_music_start_videos_samples(self):
        index = make_index(tempo(100))
        place_music_start(index, background_bga=1)
        place_videos(index, [(50, "mv.mp4")])
        place_samples(index, [(0, "a.wav"), (75, "b.wav")])
        start = index.get(0)
        assert start.bga_id == 1
        assert [n.wav for n in start.bg_notes] == [0, 1]
        assert index.get(50).bga_id == 0
        assert [n.wav for n in index.get(75).bg_notes] == [2]
        assert index.get(75).bg_notes[0].time_us == 75000


class TestProducerOrder:
    """Later producers overwrite bpm/scroll written by earlier ones on a shared millisecond."""

    def test_tempo_then_scroll(self):
        index = make_index(tempo(0, 500), sv(0, 2.0), tempo(1000, 250))
        place_music_start(index, 0)
        place_tempo_points(index)
        place_scroll_points(index)
        assert index.get(0).scroll == pytest.approx(2.0)
        assert index.get(1000).bpm == pytest.approx(240.0)

    def test_section_marker_overrides_tempo_producer(self):
        index = make_index(tempo(0, 500), tempo(1000, 250))
        place_tempo_points(index)
        assert index.get(1000).bpm == pytest.approx(240.0)
        # limit 0 forces the two-marker path; with the last note before the final
        # tempo point the first segment's end marker is the last word on 1000 ms
        place_section_lines(index, last_note_time=0, limit=0)
        assert index.get(1000).bpm == pytest.approx(120.0)
        assert index.get(1000).section_line

    def test_hit_object_refreshes_last(self):
        index = make_index(tempo(0, 500), tempo(1000, 250))
        place_tempo_points(index)
        place_section_lines(index, last_note_time=0, limit=0)
        place_hit_object(index, hit(36, 1000), KEY_LAYOUTS[7], offset=0)
        assert index.get(1000).bpm == pytest.approx(240.0)

    def test_section_marker_position_wins(self):
        # 1333.2 ms measures: the marker lands on int(1333.2) but carries position 1.0
        index = make_index(tempo(0, 333.3))
        place_samples(index, [(1333, "a.wav")])
        assert index.get(1333).measure_position < 1.0
        place_section_lines(index, last_note_time=1400)
        assert index.get(1333).measure_position == 1.0
        assert index.get(1333).bg_notes[0].section == 1.0

# =============================================================================
# Section lines
# =============================================================================

class TestSectionLines:
    def test_one_line_per_measure(self):
        index = make_index(tempo(0, 500))
        assert place_section_lines(index, last_note_time=5000) == 3
        lines = [tl for tl in index if tl.section_line]
        assert [tl.time for tl in lines] == [0, 2000, 4000]
        assert [tl.measure_position for tl in lines] == [0.0, 1.0, 2.0]
        assert all(tl.bpm == pytest.approx(120.0) for tl in lines)

    def test_segments_end_at_next_tempo_point(self):
        index = make_index(tempo(0, 500), tempo(3000, 250))
        place_section_lines(index, last_note_time=5000)
        assert [tl.time for tl in index if tl.section_line] == [0, 2000, 3000, 4000, 5000]

    def test_degenerate_segment_gets_two_lines(self):
        index = make_index(tempo(0, 0.001))
        assert place_section_lines(index, last_note_time=1000) == 2
        lines = [tl for tl in index if tl.section_line]
        assert [tl.time for tl in lines] == [0, 1000]
        assert lines[1].measure_position == pytest.approx(250000.0)

    def test_zero_beat_length_segment_gets_two_lines(self):
        index = make_index(tempo(0, 500), tempo(1000, 0))
        assert place_section_lines(index, last_note_time=5000) == 3
        lines = [tl for tl in index if tl.section_line]
        assert [tl.time for tl in lines] == [0, 1000, 5000]
        assert lines[1].measure_position == pytest.approx(0.5)
        assert lines[2].measure_position == math.inf
        assert lines[1].bpm == math.inf and lines[2].bpm == math.inf

    def test_threshold_is_exclusive(self):
        # exactly 10000 measures still get every line
        index = make_index(tempo(0, 1.0))
        assert place_section_lines(index, last_note_time=40000) == 10001

    def test_last_note_before_last_tempo_point(self):
        index = make_index(tempo(0, 500), tempo(1000, 500))
        place_section_lines(index, last_note_time=900)
        # truncation keeps the marker at the segment start
        assert [tl.time for tl in index if tl.section_line] == [0, 1000]


# =============================================================================
# Notes
# =============================================================================

class TestColumns:
    def test_physical_column(self):
        assert physical_column(0, 8) == 0
        assert physical_column(511, 8) == 7
        assert physical_column(512, 8) == 7
        assert physical_column(-5, 4) == 0

    def test_eight_key_scratch_rotation(self):
        layout = layout_for(8)
        assert layout.mode is Mode.BEAT_7K
        assert layout.lane_for(physical_column(0, 8)) == 7
        assert layout.lane_for(physical_column(511, 8)) == 6

    def test_unused_slots_keep_their_index(self):
        assert layout_for(4).mapping == (0, 2, 4, 6, None, None, None, None)
        assert layout_for(10).mapping[10:] == (None, None)
        assert layout_for(11) is None

    @pytest.mark.parametrize("k", sorted(KEY_LAYOUTS))
    def test_tables_fit_their_mode(self, k):
        layout = layout_for(k)
        used = [v for v in layout.mapping if v is not None]
        assert len(used) == k
        assert len(set(used)) == k
        assert max(used) < layout.mode.key

    @pytest.mark.parametrize("k", sorted(KEY_LAYOUTS))
    def test_every_column_has_a_lane(self, k):
        layout = layout_for(k)
        lanes = [layout.lane_for(physical_column(x, k)) for x in range(-10, 530)]
        assert None not in lanes


class TestNotes:
    def test_tap(self):
        index = make_index()
        note = place_hit_object(index, hit(36, 1000), KEY_LAYOUTS[7], offset=38)
        assert note.kind is NoteKind.NORMAL
        assert note.wav is None
        assert index.get(1038).notes[0] is note
        assert note.time_us == 1038000

    def test_hold_pairs_head_and_tail(self):
        index = make_index()
        head = place_hit_object(index, hit(36, 1000, end=2000), KEY_LAYOUTS[7], offset=38)
        tail = index.get(2038).notes[0]
        assert head.kind is NoteKind.LONG_HEAD
        assert tail.kind is NoteKind.LONG_TAIL
        assert index.get(1038).notes[0] is head
        assert index.pair_of(head) is tail
        assert index.pair_of(tail) is head
        assert tail.is_end and not head.is_end
        assert tail.section > head.section

    @pytest.mark.parametrize("end", [1000, 900])
    def test_degenerate_hold_becomes_tap(self, end):
        index = make_index()
        note = place_hit_object(index, hit(36, 1000, end=end), KEY_LAYOUTS[7], offset=38)
        assert note.kind is NoteKind.NORMAL
        assert note.time_us == 1038000
        assert len(index.notes) == 1
        assert all(n.kind is NoteKind.NORMAL for n in index.notes)

    def test_negative_time_skipped(self):
        index = make_index()
        assert place_hit_object(index, hit(36, -1), KEY_LAYOUTS[7], offset=38) is None
        assert len(index) == 0

    def test_bad_tail_skipped_without_entry(self, caplog):
        index = make_index()
        bad = parse_hit_object("36,192,1000,128,0,later:0:0:0:0:")
        with caplog.at_level(logging.WARNING):
            placed = place_hit_objects(index, [bad, hit(36, 1500)], KEY_LAYOUTS[7], offset=0)
        assert placed == 1
        assert 1000 not in index
        assert "skipped hit object" in caplog.text

    def test_hit_refreshes_entry_metadata(self):
        index = make_index(tempo(0, 500), sv(800, 0.5))
        place_hit_object(index, hit(36, 1000), KEY_LAYOUTS[7], offset=0)
        tl = index.get(1000)
        assert tl.bpm == pytest.approx(120.0)
        assert tl.scroll == pytest.approx(0.5)
