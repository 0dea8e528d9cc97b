"""
Tests — Change Magnitude Extractor
==================================
Unit tests for :mod:`solar_change_mapper.changes`.
"""

from __future__ import annotations

import numpy as np
import pytest

from shared.python.exceptions import ConfigurationError
from solar_change_mapper.changes import (
    SegmentDifference,
    anchor_times,
    change_window_mask,
    extract_changes,
    first_non_null,
    max_abs_difference,
    segment_differences,
    select_dominant,
    unmask,
)
from solar_change_mapper.composites import build_composites
from solar_change_mapper.harmonics import DAYS_PER_YEAR, Segment, TimeBase
from solar_change_mapper.model import SegmentModel

CORRECTION = 202 / DAYS_PER_YEAR


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _flat(value: float) -> list[float]:
    return [value, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0]


def _step_model(break_time: float = 2010.5) -> SegmentModel:
    """One pixel whose band B steps from 1000 to 1600 at *break_time*."""
    return SegmentModel.from_pixel_segments([[[
        Segment(2005.0, break_time, break_time, coefs={"B": _flat(1000.0)}),
        Segment(break_time, 2020.0, 0.0, coefs={"B": _flat(1600.0)}),
    ]]])


def _three_segment_model(breaks: list[float]) -> SegmentModel:
    """1x1 pixel with three segments, used for dominant selection."""
    n = len(breaks)
    return SegmentModel(
        start_time=np.arange(n, dtype=float).reshape(n, 1, 1) + 2005,
        end_time=np.arange(n, dtype=float).reshape(n, 1, 1) + 2006,
        break_time=np.array(breaks, dtype=float).reshape(n, 1, 1),
        coefs={"X": np.zeros((n, 8, 1, 1)), "Y": np.zeros((n, 8, 1, 1))},
    )


def _diff(band: str, values: list[float]) -> SegmentDifference:
    arr = np.array(values, dtype=float).reshape(len(values), 1, 1)
    return SegmentDifference(
        band=band,
        difference=arr,
        before=np.zeros_like(arr),
        after=arr.copy(),
        valid=np.ones(arr.shape, dtype=bool),
    )


# ---------------------------------------------------------------------------
# Combinators
# ---------------------------------------------------------------------------


class TestCombinators:
    def test_first_non_null_picks_first_valid_entry(self) -> None:
        values = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
        valid = np.array([[False, False], [True, False], [True, False]])
        result, found = first_non_null(values, valid)
        assert result[0] == 3.0
        assert np.isnan(result[1])
        assert found.tolist() == [True, False]

    def test_unmask_defaults_invalid_entries(self) -> None:
        out = unmask(np.array([np.nan, 7.0]), np.array([False, True]))
        assert out.tolist() == [0.0, 7.0]


# ---------------------------------------------------------------------------
# Per-segment differences
# ---------------------------------------------------------------------------


class TestSegmentDifferences:
    def _diffs(self, model: SegmentModel, anchor: str = "break") -> SegmentDifference:
        series = build_composites(model, ["B"], 2005, 2019)
        return segment_differences(model, series, ["B"], CORRECTION, anchor)["B"]

    def test_single_qualifying_pair(self) -> None:
        diff = self._diffs(_step_model())
        assert diff.difference[0, 0, 0] == pytest.approx(600.0)
        assert diff.before[0, 0, 0] == pytest.approx(1000.0)
        assert diff.after[0, 0, 0] == pytest.approx(1600.0)
        assert diff.valid[0, 0, 0]

    def test_segment_without_break_defaults_to_zero(self) -> None:
        diff = self._diffs(_step_model())
        assert diff.difference[1, 0, 0] == 0.0
        assert not diff.valid[1, 0, 0]

    def test_no_qualifying_pair_is_zero_not_nan(self) -> None:
        diff = self._diffs(_step_model(break_time=2030.0))
        assert diff.difference[0, 0, 0] == 0.0
        assert not np.isnan(diff.difference).any()

    def test_end_anchor_uses_segment_end(self) -> None:
        diff = self._diffs(_step_model(), anchor="end")
        assert diff.difference[0, 0, 0] == pytest.approx(600.0)
        assert diff.difference[1, 0, 0] == 0.0

    def test_max_abs_difference_across_bands(self) -> None:
        diffs = {"X": _diff("X", [5, -9, 3]), "Y": _diff("Y", [-6, 2, 1])}
        assert max_abs_difference(diffs)[:, 0, 0].tolist() == [6.0, 9.0, 3.0]


# ---------------------------------------------------------------------------
# Dominant selection
# ---------------------------------------------------------------------------


class TestSelectDominant:
    def test_largest_absolute_value_wins_and_keeps_sign(self) -> None:
        candidates = np.array([5.0, -9.0, 3.0])
        selection = select_dominant(candidates, np.ones(3, dtype=bool))
        assert selection.tolist() == [False, True, False]
        assert first_non_null(candidates, selection)[0] == -9.0

    def test_ties_follow_the_tie_break_rule(self) -> None:
        candidates = np.array([5.0, -5.0, 1.0])
        valid = np.ones(3, dtype=bool)
        assert select_dominant(candidates, valid, "first").tolist() == [True, False, False]
        assert select_dominant(candidates, valid, "last").tolist() == [False, True, False]

    def test_invalid_candidates_are_ignored(self) -> None:
        selection = select_dominant(np.array([5.0, -9.0]), np.array([True, False]))
        assert selection.tolist() == [True, False]

    def test_no_valid_candidate_selects_nothing(self) -> None:
        selection = select_dominant(np.array([5.0, -9.0]), np.zeros(2, dtype=bool))
        assert not selection.any()

    def test_unknown_tie_break_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            select_dominant(np.array([1.0]), np.array([True]), "random")


class TestChangeWindowMask:
    def test_only_non_zero_breaks_inside_window(self) -> None:
        model = _three_segment_model([2012.0, 0.0, 2030.0])
        assert change_window_mask(model, 2010, 2025)[:, 0, 0].tolist() == [True, False, False]


class TestExtractChanges:
    BREAKS = [2011.0, 2012.0, 2013.0]

    def test_max_strategy_gathers_every_band_from_one_segment(self) -> None:
        model = _three_segment_model(self.BREAKS)
        diffs = {"X": _diff("X", [5, -9, 3]), "Y": _diff("Y", [1, 2, 3])}
        records = extract_changes(model, diffs, ["X", "Y"], (2010, 2025), strategy="max")
        assert records["X"].difference[0, 0] == -9.0
        assert records["Y"].difference[0, 0] == 2.0
        assert records["X"].segment_index[0, 0] == records["Y"].segment_index[0, 0] == 1
        assert records["Y"].break_time[0, 0] == 2012.0

    def test_per_band_strategy_selects_independently(self) -> None:
        model = _three_segment_model(self.BREAKS)
        diffs = {"X": _diff("X", [5, -9, 3]), "Y": _diff("Y", [1, 2, 3])}
        records = extract_changes(model, diffs, ["X", "Y"], (2010, 2025), strategy="per_band")
        assert records["X"].segment_index[0, 0] == 1
        assert records["Y"].segment_index[0, 0] == 2
        assert records["Y"].difference[0, 0] == 3.0

    def test_first_strategy_takes_first_non_zero_segment(self) -> None:
        model = _three_segment_model(self.BREAKS)
        diffs = {"X": _diff("X", [0, 4, 7]), "Y": _diff("Y", [0, 0, 0])}
        records = extract_changes(model, diffs, ["X", "Y"], (2010, 2025), strategy="first")
        assert records["X"].difference[0, 0] == 4.0
        assert records["X"].break_time[0, 0] == 2012.0

    def test_nothing_in_window_is_masked_then_filled(self) -> None:
        model = _three_segment_model(self.BREAKS)
        diffs = {"X": _diff("X", [5, -9, 3])}
        record = extract_changes(model, diffs, ["X"], (2020, 2025))["X"]
        assert not record.valid[0, 0]
        assert record.segment_index[0, 0] == -1
        assert np.isnan(record.difference[0, 0])
        assert np.isnan(record.break_time[0, 0])
        filled = record.filled()
        assert filled.difference[0, 0] == 0.0
        assert filled.break_time[0, 0] == 0.0

    def test_inverted_window_raises(self) -> None:
        model = _three_segment_model(self.BREAKS)
        with pytest.raises(ConfigurationError):
            extract_changes(model, {"X": _diff("X", [1, 2, 3])}, ["X"], (2025, 2010))


# ---------------------------------------------------------------------------
# Time bases
# ---------------------------------------------------------------------------


def _seasonal_step_model(time_base: TimeBase) -> SegmentModel:
    """Band B steps from 1000 to 1600 at 2013.0 on top of an annual cycle.

    Times are given in *time_base*; the slope is zero so the coefficients
    are the same in every encoding.
    """
    enc = time_base.encode
    before = [1000.0, 0.0, 500.0, 0.0, 0.0, 0.0, 0.0, 0.0]
    after = [1600.0, 0.0, 500.0, 0.0, 0.0, 0.0, 0.0, 0.0]
    return SegmentModel.from_pixel_segments(
        [[[
            Segment(enc(2005.0), enc(2013.0), enc(2013.0), coefs={"B": before}),
            Segment(enc(2013.0), enc(2020.0), 0.0, coefs={"B": after}),
        ]]],
        time_base=time_base,
    )


class TestTimeBaseEquivalence:
    EXPECTED_2012 = 1000.0 + 500.0 * np.cos(2 * np.pi * (2012 + CORRECTION))

    @pytest.mark.parametrize("time_base", list(TimeBase))
    def test_anchor_times_are_fractional_years(self, time_base: TimeBase) -> None:
        anchors = anchor_times(_seasonal_step_model(time_base))
        assert anchors[0, 0, 0] == pytest.approx(2013.0, abs=1e-6)
        assert np.isnan(anchors[1, 0, 0])

    @pytest.mark.parametrize("time_base", list(TimeBase))
    def test_composites_agree_across_time_bases(self, time_base: TimeBase) -> None:
        series = build_composites(_seasonal_step_model(time_base), ["B"], 2011, 2014)
        assert series.get(2012, "B")[0, 0] == pytest.approx(self.EXPECTED_2012, abs=1e-6)

    @pytest.mark.parametrize("time_base", list(TimeBase))
    def test_differences_agree_across_time_bases(self, time_base: TimeBase) -> None:
        model = _seasonal_step_model(time_base)
        series = build_composites(model, ["B"], 2011, 2014)
        diff = segment_differences(model, series, ["B"], CORRECTION)["B"]
        assert diff.valid[0, 0, 0]
        assert diff.difference[0, 0, 0] == pytest.approx(600.0, abs=1e-6)
        assert diff.before[0, 0, 0] == pytest.approx(self.EXPECTED_2012, abs=1e-6)
