"""
Shared fixtures: a tiny .osu writer so every test can describe its chart
in a few lines.
"""
import pytest


def build_osu(
    timing=("0,500,4,1,0,100,1,0",),
    hits=("36,192,1000,1,0,0:0:0:0:",),
    events=(),
    mode=3,
    keys=7,
    title="Song",
    version="Hard",
    artist="Artist",
    creator="Mapper",
    audio="audio.mp3",
):
    lines = [
        "osu file format v14",
        "",
        "[General]",
        f"AudioFilename: {audio}",
        "AudioLeadIn: 0",
        f"Mode: {mode}",
        "",
        "[Metadata]",
        f"Title:{title}",
        f"Artist:{artist}",
        f"Creator:{creator}",
        f"Version:{version}",
        "",
        "[Difficulty]",
        "HPDrainRate:8",
        f"CircleSize:{keys}",
        "OverallDifficulty:8",
        "",
        "[Events]",
        "//Background and Video events",
        *events,
        "",
        "[TimingPoints]",
        *timing,
        "",
        "",
        "[HitObjects]",
        *hits,
        "",
    ]
    return "\n".join(lines)


@pytest.fixture
def make_osu():
    return build_osu


@pytest.fixture
def write_osu(tmp_path):
    """Writes build_osu(**kw) as cp932 bytes and returns the path."""
    def _write(name="chart.osu", **kw):
        path = tmp_path / name
        path.write_bytes(build_osu(**kw).encode("cp932"))
        return path
    return _write
