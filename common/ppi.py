"""
Predicted Preference Index (PPI).

Both curves are aligned to R40 and normalised at 1 kHz, then compared on a
fixed 1/12-octave-ish grid. Three statistics of the error curve feed a
linear model:

    ppi = 100.0795 - 8.5*stdev - 6.796*|slope| - 3.475*avg_error

clamped to [0, 100]. STDEV and SLOPE use frequencies up to 10 kHz;
AVG_ERROR uses 40 Hz to 10 kHz.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

import numpy as np

from common.frequency import align_to_r40, log_interpolate_many, normalize
from common.types import FrequencyCurve
from common.utils import clamp


PPI_FREQUENCIES = np.asarray([
    20, 21.2, 22.4, 23.6, 25, 26.5, 28, 30, 31.5, 33.5, 35.5, 37.5, 40, 42.5, 45, 47.5,
    50, 53, 56, 60, 63, 67, 71, 75, 80, 85, 90, 95, 100, 106, 112, 118, 125, 132, 140,
    150, 160, 170, 180, 190, 200, 212, 224, 236, 250, 265, 280, 300, 315, 335, 355, 375,
    400, 425, 450, 475, 500, 530, 560, 600, 630, 670, 710, 750, 800, 850, 900, 950, 1000,
    1060, 1120, 1180, 1250, 1320, 1400, 1500, 1600, 1700, 1800, 1900, 2000, 2120, 2240,
    2360, 2500, 2650, 2800, 3000, 3150, 3350, 3550, 3750, 4000, 4250, 4500, 4750, 5000,
    5300, 5600, 6000, 6300, 6700, 7100, 7500, 8000, 8500, 9000, 9500, 10000, 10600,
    11200, 11800, 12500, 13200, 14000, 15000, 16000, 17000, 18000, 19000, 20000,
], dtype=float)

STDEV_SLOPE_MAX_HZ = 10000.0
AVG_ERROR_MIN_HZ = 40.0
AVG_ERROR_MAX_HZ = 10000.0

PPI_INTERCEPT = 100.0795
PPI_W_STDEV = 8.5
PPI_W_SLOPE = 6.796
PPI_W_AVG_ERROR = 3.475


@dataclass(slots=True, frozen=True)
class PPIResult:
    ppi: float
    stdev: float
    slope: float
    avg_error: float

    def to_dict(self) -> Dict[str, float]:
        return {"ppi": self.ppi, "stdev": self.stdev, "slope": self.slope, "avgError": self.avg_error}


ZERO_RESULT = PPIResult(0.0, 0.0, 0.0, 0.0)


def error_curve(candidate: FrequencyCurve, target: FrequencyCurve) -> np.ndarray:
    """candidate - target (dB) at PPI_FREQUENCIES after R40 alignment and 1 kHz normalisation."""
    cand = normalize(align_to_r40(candidate))
    tgt = normalize(align_to_r40(target))
    return log_interpolate_many(cand, PPI_FREQUENCIES) - log_interpolate_many(tgt, PPI_FREQUENCIES)


def _stdev_and_slope(err: np.ndarray, freqs: np.ndarray) -> tuple[float, float]:
    if err.size == 0:
        return 0.0, 0.0
    mean = float(err.mean())
    stdev = float(np.sqrt(np.mean((err - mean) ** 2)))  # population

    ln_f = np.log(freqs)
    dx = ln_f - ln_f.mean()
    denom = float(np.sum(dx * dx))
    slope = float(np.sum(dx * (err - mean)) / denom) if denom > 0 else 0.0
    return stdev, slope


def calculate_ppi(candidate: FrequencyCurve, target: FrequencyCurve) -> PPIResult:
    err = error_curve(candidate, target)
    if err.size == 0:
        return ZERO_RESULT

    band = PPI_FREQUENCIES <= STDEV_SLOPE_MAX_HZ
    stdev, slope = _stdev_and_slope(err[band], PPI_FREQUENCIES[band])

    avg_band = (PPI_FREQUENCIES >= AVG_ERROR_MIN_HZ) & (PPI_FREQUENCIES <= AVG_ERROR_MAX_HZ)
    avg_error = float(np.mean(np.abs(err[avg_band]))) if avg_band.any() else 0.0

    score = PPI_INTERCEPT - PPI_W_STDEV * stdev - PPI_W_SLOPE * abs(slope) - PPI_W_AVG_ERROR * avg_error
    return PPIResult(ppi=clamp(score, 0.0, 100.0), stdev=stdev, slope=slope, avg_error=avg_error)
