"""
Frequency-response curve math: parsing, log-frequency interpolation,
R40 alignment, 1 kHz normalisation and curve averaging.
"""
from __future__ import annotations

import re
from typing import Iterable, List, Sequence

import numpy as np

from common.types import FrequencyCurve
from common.utils import format_number, round_half_up


F_MIN = 20.0
F_MAX = 20000.0
NORMALIZE_REF_HZ = 1000.0

_LINE_SPLIT = re.compile(r"[\r\n]+")
_FIELD_SPLIT = re.compile(r"[\s;,]+")
# leading numeric prefix, so "1000Hz" reads as 1000
_NUMBER = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _r40_grid() -> np.ndarray:
    step = 2.0 ** (1.0 / 12.0)
    out: List[float] = []
    f = F_MIN
    while f <= F_MAX:
        out.append(round_half_up(f, 2))
        f *= step
    return np.asarray(out, dtype=float)


R40_FREQUENCIES = _r40_grid()


def _leading_float(token: str) -> float:
    m = _NUMBER.match(token)
    if not m:
        return float("nan")
    return float(m.group(0))


def parse_frequency_response(text: str) -> FrequencyCurve:
    """
    Parse measurement text into a curve.

    Lines are separated by CR/LF; blank lines and lines starting with '*' are
    skipped. Fields are split on whitespace, ';' or ','. A row survives only if
    its first two fields are finite and the frequency lies in [20, 20000] Hz.
    Row order is preserved.
    """
    freqs: List[float] = []
    levels: List[float] = []
    for line in _LINE_SPLIT.split(text or ""):
        s = line.strip()
        if not s or s.startswith("*"):
            continue
        parts = _FIELD_SPLIT.split(s)
        if len(parts) < 2:
            continue
        f = _leading_float(parts[0])
        d = _leading_float(parts[1])
        if not (np.isfinite(f) and np.isfinite(d)):
            continue
        if F_MIN <= f <= F_MAX:
            freqs.append(f)
            levels.append(d)
    return FrequencyCurve(np.asarray(freqs, dtype=float), np.asarray(levels, dtype=float))


def log_interpolate_many(curve: FrequencyCurve, targets: Iterable[float]) -> np.ndarray:
    """
    Interpolate `curve` at each target frequency, linear in log10(f).
    Targets outside the curve's range take the nearest endpoint value;
    an empty curve yields zeros.
    """
    fs = np.asarray(list(targets) if not isinstance(targets, np.ndarray) else targets, dtype=float)
    n = len(curve)
    if n == 0:
        return np.zeros(fs.shape, dtype=float)
    freq, db = curve.frequencies, curve.db
    if n == 1:
        return np.full(fs.shape, db[0], dtype=float)

    lo = np.clip(np.searchsorted(freq, fs, side="right") - 1, 0, n - 2)
    hi = lo + 1
    f_lo, f_hi = freq[lo], freq[hi]
    with np.errstate(divide="ignore", invalid="ignore"):
        span = np.log10(f_hi) - np.log10(f_lo)
        t = np.where(span != 0.0, (np.log10(fs) - np.log10(f_lo)) / span, 0.0)
    out = db[lo] + t * (db[hi] - db[lo])

    out = np.where(fs <= freq[0], db[0], out)
    out = np.where(fs >= freq[-1], db[-1], out)
    return out.astype(float)


def log_interpolate(curve: FrequencyCurve, f: float) -> float:
    return float(log_interpolate_many(curve, np.asarray([f], dtype=float))[0])


def align_to_r40(curve: FrequencyCurve) -> FrequencyCurve:
    """Resample onto the R40 grid (empty input gives an all-zero curve)."""
    return FrequencyCurve(R40_FREQUENCIES.copy(), log_interpolate_many(curve, R40_FREQUENCIES))


def normalize(curve: FrequencyCurve, ref_hz: float = NORMALIZE_REF_HZ) -> FrequencyCurve:
    """Shift the curve so that its interpolated level at `ref_hz` is 0 dB."""
    offset = log_interpolate(curve, ref_hz)
    return FrequencyCurve(curve.frequencies.copy(), curve.db - offset)


def average_curves(a: FrequencyCurve, b: FrequencyCurve) -> FrequencyCurve:
    """Mean of two channels on `a`'s grid; if either is empty the other is returned."""
    if a.is_empty:
        return b
    if b.is_empty:
        return a
    b_on_a = log_interpolate_many(b, a.frequencies)
    return FrequencyCurve(a.frequencies.copy(), (a.db + b_on_a) / 2.0)


def average_samples(curves: Sequence[FrequencyCurve]) -> FrequencyCurve:
    """
    Running mean of repeated samples on the first sample's grid.

    Sample i (0-based) enters with weight 1/(i+1) and the accumulated mean keeps
    i/(i+1), which equals the arithmetic mean of all samples.
    """
    usable = [c for c in curves if not c.is_empty]
    if not usable:
        return FrequencyCurve.empty()
    acc = usable[0].db.copy()
    grid = usable[0].frequencies
    for i, c in enumerate(usable[1:], start=1):
        acc = acc * (i / (i + 1)) + log_interpolate_many(c, grid) / (i + 1)
    return FrequencyCurve(grid.copy(), acc)


def curve_to_text(curve: FrequencyCurve) -> str:
    """Serialise a curve as tab-separated rows, the format parse_frequency_response reads."""
    return "\n".join(
        f"{format_number(f)}\t{format_number(d)}" for f, d in zip(curve.frequencies, curve.db)
    )


def rounded_db(curve: FrequencyCurve, ndigits: int = 2) -> List[float]:
    """Levels rounded half-up, as plain floats for JSON/msgpack export."""
    return [round_half_up(float(d), ndigits) for d in curve.db]
