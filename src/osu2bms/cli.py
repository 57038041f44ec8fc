from __future__ import annotations
import argparse, logging, pathlib, sys, traceback
from . import process, write
from .config import load_config
from .errors import FatalDecodeError

def _init_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

def main(argv=None):
    p = argparse.ArgumentParser(description="osu!mania (.osu) -> BMS chart model")
    p.add_argument("--in", dest="infile", required=True, help="Input chart (.osu)")
    p.add_argument("--out", dest="outfile", required=False, help="Output JSON (default: input path with .json)")
    p.add_argument("--midi-out", dest="midi_out", default=None, help="Also write a MIDI preview (tempo map + one pitch per lane)")
    p.add_argument("--config", dest="config", default=None, help="YAML config (defaults applied if omitted)")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = p.parse_args(argv)
    _init_logging(args.verbose)

    in_path = pathlib.Path(args.infile).expanduser().resolve()
    if not in_path.exists():
        print(f"[cli] ERROR: Input not found: {in_path}", file=sys.stderr)
        sys.exit(1)

    cfg = load_config(args.config)
    print(f"[cli] infile = {in_path}")

    try:
        model = process.convert_file(in_path, cfg)
    except FatalDecodeError as e:
        print(f"[cli] ERROR: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception:
        traceback.print_exc()
        sys.exit(2)

    if model is None:
        print(f"[cli] no chart: {in_path.name} is not a supported mania chart", file=sys.stderr)
        sys.exit(3)

    out_path = pathlib.Path(args.outfile).expanduser().resolve() if args.outfile else in_path.with_suffix(".json")
    write.write_chart_json(model, out_path)
    print(f"[cli] json      -> {out_path}")

    if args.midi_out:
        midi_path = pathlib.Path(args.midi_out).expanduser().resolve()
        write.write_midi_preview(model, midi_path, cfg.get("midi", {}))
        print(f"[cli] midi      -> {midi_path}")

    print(f"[cli] Done. mode={model.mode.hint} timelines={len(model.timelines)} "
          f"notes={model.total_notes()} bpm={model.min_bpm:g}-{model.max_bpm:g}")
