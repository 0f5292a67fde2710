from __future__ import annotations

import gzip
import json
import logging
from pathlib import Path
from typing import Any, Optional, TextIO

logger = logging.getLogger(__name__)


def safe_ratio(num: float, denom: float) -> Optional[float]:
    """num / denom, or None (undefined) when the denominator is zero."""
    if denom == 0:
        return None
    return float(num) / float(denom)


def safe_pct(num: float, denom: float) -> Optional[float]:
    r = safe_ratio(num, denom)
    return None if r is None else r * 100.0


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)  # type: ignore[return-value]
    return open(p, mode)


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)
        f.write("\n")
