from __future__ import annotations

import json
import math
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


def iso_now_ms() -> str:
    """UTC ISO-8601 timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def today_iso() -> str:
    """UTC calendar date, YYYY-MM-DD."""
    return datetime.now(timezone.utc).date().isoformat()


def clamp(v: float, lo: float, hi: float) -> float:
    return float(min(hi, max(lo, v)))


def round_half_up(x: float, ndigits: int = 2) -> float:
    """Round like Math.round(x * 10^n) / 10^n (halves go up, not to even)."""
    scale = 10 ** ndigits
    return math.floor(x * scale + 0.5) / scale


def format_number(x: float) -> str:
    """Shortest text for a float; integral values lose the trailing '.0'."""
    x = float(x)
    if x.is_integer():
        return str(int(x))
    return repr(x)


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Replace `path` as a whole: write to a sibling temp file, then os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def write_json_atomic(path: Path, data: Any, *, indent: Optional[int] = 2) -> None:
    payload = json.dumps(data, indent=indent, ensure_ascii=False, separators=None if indent else (",", ":"))
    write_bytes_atomic(path, payload.encode("utf-8"))


def read_json(path: Path) -> Any:
    """Load a JSON document. Raises FileNotFoundError / ValueError to the caller."""
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)
