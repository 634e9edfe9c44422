"""
Unit tests for curve parsing, interpolation and averaging
"""

import math

import numpy as np
import pytest

from common.frequency import (
    R40_FREQUENCIES,
    align_to_r40,
    average_curves,
    average_samples,
    curve_to_text,
    log_interpolate,
    log_interpolate_many,
    normalize,
    parse_frequency_response,
)
from common.types import FrequencyCurve


def curve(pairs):
    f, d = zip(*pairs)
    return FrequencyCurve(np.array(f, dtype=float), np.array(d, dtype=float))


class TestParse:
    """Measurement text parsing"""

    def test_skips_comments_blank_lines_and_out_of_range(self):
        """Comment, blank, out-of-band and non-numeric rows are dropped"""
        text = "* REW export\r\n\r\n10\t1\n20\t-5\n1000;0\n5000, 2.5\nfreq dB\n20000 3\n25000\t4\n"
        c = parse_frequency_response(text)
        assert list(c.frequencies) == [20.0, 1000.0, 5000.0, 20000.0]
        assert list(c.db) == [-5.0, 0.0, 2.5, 3.0]

    def test_row_order_preserved(self):
        """Rows are not sorted by the parser"""
        c = parse_frequency_response("1000 1\n100 2\n")
        assert list(c.frequencies) == [1000.0, 100.0]

    def test_non_finite_values_rejected(self):
        """NaN / inf levels never reach the curve"""
        c = parse_frequency_response("100\tnan\n200\tinf\n300\t1\n")
        assert list(c.frequencies) == [300.0]

    def test_numeric_prefix_accepted(self):
        """A unit glued to the number still parses"""
        c = parse_frequency_response("1000Hz\t-3dB\n")
        assert list(c.frequencies) == [1000.0]
        assert list(c.db) == [-3.0]

    def test_empty_input(self):
        """Empty text gives an empty curve"""
        assert parse_frequency_response("").is_empty


class TestInterpolation:
    """Log-frequency interpolation"""

    def test_exact_points(self):
        c = curve([(100, 0), (1000, 10), (10000, 4)])
        assert log_interpolate(c, 1000) == pytest.approx(10.0)

    def test_midpoint_is_linear_in_log_frequency(self):
        """Geometric mean of two points gets the arithmetic mean of their levels"""
        c = curve([(100, 0), (1000, 10)])
        assert log_interpolate(c, math.sqrt(100 * 1000)) == pytest.approx(5.0)

    def test_clamps_outside_range(self):
        c = curve([(100, 1), (1000, 2)])
        assert log_interpolate(c, 20) == 1.0
        assert log_interpolate(c, 20000) == 2.0

    def test_empty_curve_is_zero(self):
        assert log_interpolate(FrequencyCurve.empty(), 1000) == 0.0
        assert np.all(log_interpolate_many(FrequencyCurve.empty(), [20, 1000]) == 0.0)


class TestGrid:
    """R40 alignment and normalisation"""

    def test_r40_grid_shape(self):
        """20 Hz times 2^(1/12) steps up to 20 kHz, rounded to 0.01 Hz"""
        assert len(R40_FREQUENCIES) == 120
        assert R40_FREQUENCIES[0] == 20.0
        assert R40_FREQUENCIES[1] == pytest.approx(21.19)
        assert R40_FREQUENCIES[12] == pytest.approx(40.0)
        assert R40_FREQUENCIES[-1] <= 20000.0
        assert np.all(np.diff(R40_FREQUENCIES) > 0)

    def test_align_empty_gives_zeros(self):
        aligned = align_to_r40(FrequencyCurve.empty())
        assert len(aligned) == 120
        assert np.all(aligned.db == 0.0)

    def test_normalize_zeroes_1khz(self):
        c = curve([(100, 7), (1000, 3), (10000, -1)])
        n = normalize(c)
        assert log_interpolate(n, 1000) == pytest.approx(0.0)
        assert list(n.db) == pytest.approx([4.0, 0.0, -4.0])


class TestAveraging:
    """Channel and sample averaging"""

    def test_average_curves_on_first_grid(self):
        a = curve([(100, 0), (1000, 2)])
        b = curve([(100, 2), (1000, 4)])
        avg = average_curves(a, b)
        assert list(avg.frequencies) == [100.0, 1000.0]
        assert list(avg.db) == pytest.approx([1.0, 3.0])

    def test_average_curves_with_empty_side(self):
        a = curve([(100, 0), (1000, 2)])
        assert average_curves(a, FrequencyCurve.empty()) is a
        assert average_curves(FrequencyCurve.empty(), a) is a

    def test_running_mean_equals_direct_mean(self):
        """Iterative i/(i+1) weighting equals the arithmetic mean in any order"""
        grid = [100, 1000, 10000]
        samples = [curve(zip(grid, d)) for d in ([1, 2, 3], [4, 0, -2], [7, 1, 5], [0, 0, 0])]
        expected = np.mean([s.db for s in samples], axis=0)
        assert list(average_samples(samples).db) == pytest.approx(list(expected))
        assert list(average_samples(samples[::-1]).db) == pytest.approx(list(expected))

    def test_average_samples_skips_empty(self):
        a = curve([(100, 2), (1000, 2)])
        out = average_samples([FrequencyCurve.empty(), a])
        assert list(out.db) == [2.0, 2.0]
        assert average_samples([]).is_empty

    def test_curve_text_reparses(self):
        """Serialised averaged curves are valid measurement text"""
        c = curve([(20, -1.25), (1000, 0), (20000, 3.5)])
        text = curve_to_text(c)
        assert text.splitlines()[1] == "1000\t0"
        back = parse_frequency_response(text)
        assert list(back.db) == [-1.25, 0.0, 3.5]
