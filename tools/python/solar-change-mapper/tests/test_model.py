"""
Tests — Segment Model
=====================
Unit tests for :class:`~solar_change_mapper.model.SegmentModel`.
"""

from __future__ import annotations

import numpy as np
import pytest

from shared.python.exceptions import BandNotFoundError, ConfigurationError, InputValidationError
from solar_change_mapper.harmonics import Segment
from solar_change_mapper.model import SegmentModel, gather


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _seg(start: float, end: float, brk: float, intercept: float) -> Segment:
    return Segment(
        start_time=start,
        end_time=end,
        break_time=brk,
        coefs={"NDVI": [intercept, 0.0, 100.0, 0.0, 0.0, 0.0, 0.0, 0.0]},
        rmse={"NDVI": 50.0},
        num_obs=40,
        change_prob=1.0 if brk else 0.0,
        magnitude={"NDVI": -1200.0},
    )


def _grid() -> SegmentModel:
    """1x3 grid: two segments, one segment, no segment."""
    return SegmentModel.from_pixel_segments([[
        [_seg(2005, 2015, 2015, 6000), _seg(2015, 2025, 0, 2000)],
        [_seg(2005, 2025, 0, 5000)],
        [],
    ]])


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_shapes_and_padding(self) -> None:
        model = _grid()
        assert model.n_segments == 2
        assert model.shape == (1, 3)
        assert model.coefs["NDVI"].shape == (2, 8, 1, 3)
        assert model.present[:, 0, 1].tolist() == [True, False]
        assert not model.present[:, 0, 2].any()

    def test_segments_at_round_trips_pixel_segments(self) -> None:
        model = _grid()
        segments = model.segments_at(0, 0)
        assert len(segments) == 2
        assert segments[0].break_time == 2015
        assert segments[1].coefs["NDVI"][0] == 2000
        assert segments[0].magnitude["NDVI"] == -1200.0
        assert model.segments_at(0, 2) == []

    def test_arrays_are_read_only(self) -> None:
        model = _grid()
        with pytest.raises(ValueError):
            model.end_time[0, 0, 0] = 0.0

    def test_rejects_empty_input(self) -> None:
        with pytest.raises(ConfigurationError):
            SegmentModel.from_pixel_segments([[[]]])

    def test_rejects_mismatched_shapes(self) -> None:
        with pytest.raises(InputValidationError):
            SegmentModel(
                start_time=np.zeros((1, 2, 2)),
                end_time=np.zeros((1, 2, 3)),
                break_time=np.zeros((1, 2, 2)),
                coefs={"NDVI": np.zeros((1, 8, 2, 2))},
            )

    def test_rejects_wrong_coefficient_axis(self) -> None:
        with pytest.raises(InputValidationError):
            SegmentModel(
                start_time=np.zeros((1, 2, 2)),
                end_time=np.zeros((1, 2, 2)),
                break_time=np.zeros((1, 2, 2)),
                coefs={"NDVI": np.zeros((1, 6, 2, 2))},
            )

    def test_require_bands(self) -> None:
        with pytest.raises(BandNotFoundError):
            _grid().require_bands(["NDVI", "Albedo"])


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class TestEvaluation:
    def test_synthesize_uses_active_segment(self) -> None:
        values = _grid().synthesize("NDVI", 2010.0)
        assert values[0, 0] == pytest.approx(6100.0)
        assert values[0, 1] == pytest.approx(5100.0)
        assert np.isnan(values[0, 2])

    def test_synthesize_extrapolates_past_the_last_segment(self) -> None:
        values = _grid().synthesize("NDVI", 2030.0, mode="mean")
        assert values[0, 0] == pytest.approx(2000.0)

    def test_gather_returns_nan_for_minus_one(self) -> None:
        stack = np.arange(6, dtype=float).reshape(2, 1, 3)
        picked = gather(stack, np.array([[1, 0, -1]]))
        assert picked[0, :2].tolist() == [3.0, 1.0]
        assert np.isnan(picked[0, 2])

    def test_amplitude_feature_names(self) -> None:
        features = _grid().amplitude_features(["NDVI"], 2020.0)
        assert set(features) == {
            "NDVI_SLP_LAST", "NDVI_AMP1_LAST", "NDVI_AMP2_LAST", "NDVI_AMP3_LAST", "NDVI_RMSE_LAST",
        }
        assert features["NDVI_AMP1_LAST"][0, 0] == pytest.approx(100.0)
        assert features["NDVI_RMSE_LAST"][0, 1] == 50.0
