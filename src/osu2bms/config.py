# src/osu2bms/config.py
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Optional
import copy
import logging
import yaml

from .timeline import DEFAULT_OFFSET_MS, SECTION_LINE_LIMIT

log = logging.getLogger(__name__)

# package root: .../src/osu2bms
PKG_ROOT = Path(__file__).resolve().parent
DEFAULT_CFG_PATH = PKG_ROOT / "config.default.yaml"
USER_CFG_PATH = Path.home() / ".config" / "osu2bms" / "config.yaml"

def _safe_load(path: Path) -> Dict[str, Any]:
    try:
        if path.exists():
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            if isinstance(data, dict):
                return data
            log.warning("config %s is not a mapping, ignored", path)
    except (OSError, yaml.YAMLError) as e:
        # a broken user file must not stop conversion
        log.warning("config %s unreadable, ignored: %s", path, e)
    return {}

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(a)
    for k, v in (b or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out

def load_config(
    user_path: Optional[Path] = None,
    default_path: Optional[Path] = None,
) -> Dict[str, Any]:
    """
    Packaged defaults merged with the user's overrides.
    Guarantees the keys the converter reads even if both files are missing.
    """
    dpath = Path(default_path) if default_path else DEFAULT_CFG_PATH
    upath = Path(user_path) if user_path else USER_CFG_PATH

    defaults = _safe_load(dpath)
    user = _safe_load(upath)
    cfg = _deep_merge(defaults, user)

    cfg.setdefault("offset_ms", DEFAULT_OFFSET_MS)
    cfg.setdefault("section_line_limit", SECTION_LINE_LIMIT)
    cfg.setdefault("encoding", "cp932")
    cfg.setdefault("encoding_errors", "replace")
    cfg.setdefault("ln_type", "undefined")
    cfg.setdefault("judge_rank", 3)
    midi = cfg.setdefault("midi", {})
    midi.setdefault("ticks_per_beat", 480)
    midi.setdefault("base_pitch", 36)
    midi.setdefault("velocity", 100)
    midi.setdefault("tap_ticks", 60)
    return cfg
