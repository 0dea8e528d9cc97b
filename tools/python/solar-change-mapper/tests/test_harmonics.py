"""
Tests — Harmonic Evaluator
==========================
Unit tests for :mod:`solar_change_mapper.harmonics`.
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from shared.python.exceptions import BandNotFoundError, ConfigurationError
from solar_change_mapper.harmonics import (
    Segment,
    TimeBase,
    amplitude_stack,
    amplitudes,
    evaluate,
    harmonic_value,
    resolve_segment,
    resolve_segment_index,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _segment(start: float, end: float, coefs: list[float] | None = None, rmse: float = 0.0) -> Segment:
    return Segment(
        start_time=start,
        end_time=end,
        break_time=end,
        coefs={"NDVI": coefs or [0.0] * 8},
        rmse={"NDVI": rmse},
    )


# ---------------------------------------------------------------------------
# Segment resolution
# ---------------------------------------------------------------------------


class TestResolveSegment:
    def setup_method(self) -> None:
        self.segments = [_segment(2005, 2015), _segment(2015, 2025)]

    def test_query_inside_first_segment(self) -> None:
        assert resolve_segment(self.segments, 2010) is self.segments[0]

    def test_query_inside_second_segment(self) -> None:
        assert resolve_segment(self.segments, 2020) is self.segments[1]

    def test_query_beyond_last_segment_extrapolates(self) -> None:
        assert resolve_segment(self.segments, 2030) is self.segments[1]

    def test_boundary_belongs_to_earlier_segment(self) -> None:
        assert resolve_segment(self.segments, 2015) is self.segments[0]

    def test_empty_segment_list_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            resolve_segment([], 2010)


class TestResolveSegmentIndex:
    def test_matches_scalar_resolution(self) -> None:
        end_times = np.array([[[2015.0]], [[2025.0]]])
        assert resolve_segment_index(end_times, 2010)[0, 0] == 0
        assert resolve_segment_index(end_times, 2020)[0, 0] == 1
        assert resolve_segment_index(end_times, 2030)[0, 0] == 1

    def test_padding_is_skipped_and_empty_pixels_get_minus_one(self) -> None:
        end_times = np.array([
            [[2015.0, 2012.0, np.nan]],
            [[2025.0, np.nan, np.nan]],
        ])
        index = resolve_segment_index(end_times, 2020)
        assert index.tolist() == [[1, 0, -1]]


# ---------------------------------------------------------------------------
# Forward model
# ---------------------------------------------------------------------------


class TestEvaluate:
    COEFS = [10.0, 0.0, 5.0, 0.0, 0.0, 0.0, 0.0, 0.0]

    def test_cosine_peak_at_zero(self) -> None:
        seg = _segment(0, 365.25, self.COEFS)
        assert evaluate(seg, "NDVI", 0.0, TimeBase.JULIAN_DAYS) == pytest.approx(15.0)

    def test_cosine_trough_at_half_period_julian_days(self) -> None:
        seg = _segment(0, 365.25, self.COEFS)
        assert evaluate(seg, "NDVI", 182.625, TimeBase.JULIAN_DAYS) == pytest.approx(5.0)

    def test_fractional_years_use_one_cycle_per_unit(self) -> None:
        seg = _segment(2000, 2001, self.COEFS)
        assert evaluate(seg, "NDVI", 2000.5, TimeBase.FRACTIONAL_YEARS) == pytest.approx(5.0)

    def test_mean_mode_drops_seasonality(self) -> None:
        seg = _segment(0, 10, [10.0, 2.0, 5.0, 1.0, 3.0, 3.0, 3.0, 3.0])
        assert evaluate(seg, "NDVI", 3.0, mode="mean") == pytest.approx(16.0)

    def test_unknown_mode_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            evaluate(_segment(0, 1), "NDVI", 0.5, mode="median")  # type: ignore[arg-type]

    def test_missing_band_raises(self) -> None:
        with pytest.raises(BandNotFoundError):
            evaluate(_segment(0, 1), "Albedo", 0.5)

    def test_wrong_coefficient_count_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            Segment(0.0, 1.0, 0.0, coefs={"NDVI": [1.0, 2.0]})

    def test_raster_evaluation_broadcasts(self) -> None:
        coefs = np.zeros((8, 2, 2))
        coefs[0] = [[1.0, 2.0], [3.0, 4.0]]
        coefs[2] = 1.0
        values = harmonic_value(coefs, 0.0, TimeBase.FRACTIONAL_YEARS.omega)
        np.testing.assert_allclose(values, [[2.0, 3.0], [4.0, 5.0]])


class TestAmplitudes:
    def test_per_harmonic_amplitudes(self) -> None:
        seg = _segment(0, 1, [0.0, 3.0, 3.0, 4.0, 0.0, 0.0, 6.0, 8.0], rmse=12.5)
        amps = amplitudes(seg, "NDVI")
        assert amps.slope == 3.0
        assert amps.amp1 == pytest.approx(5.0)
        assert amps.amp2 == 0.0
        assert amps.amp3 == pytest.approx(10.0)
        assert amps.rmse == 12.5

    def test_raster_amplitudes(self) -> None:
        coefs = np.zeros((8, 1, 1))
        coefs[4], coefs[5] = 5.0, 12.0
        stack = amplitude_stack(coefs)
        assert stack.shape == (3, 1, 1)
        assert stack[1, 0, 0] == pytest.approx(13.0)


class TestTimeBase:
    def test_parse_accepts_names_and_codes(self) -> None:
        assert TimeBase.parse("julian_days") is TimeBase.JULIAN_DAYS
        assert TimeBase.parse(2) is TimeBase.UNIX_MS
        assert TimeBase.parse(TimeBase.FRACTIONAL_YEARS) is TimeBase.FRACTIONAL_YEARS

    def test_parse_rejects_unknown_name(self) -> None:
        with pytest.raises(ConfigurationError):
            TimeBase.parse("weeks")

    def test_omegas(self) -> None:
        assert TimeBase.FRACTIONAL_YEARS.omega == pytest.approx(2 * math.pi)
        assert TimeBase.JULIAN_DAYS.omega == pytest.approx(2 * math.pi / 365.25)

    def test_unix_ms_encoding_starts_at_epoch(self) -> None:
        assert TimeBase.UNIX_MS.encode(1970.0) == 0.0
        assert TimeBase.UNIX_MS.decode(TimeBase.UNIX_MS.encode(2015.25)) == pytest.approx(2015.25)
