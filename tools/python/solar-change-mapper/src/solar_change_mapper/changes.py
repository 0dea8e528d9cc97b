"""
Change Magnitude Extractor
==========================
Attributes annual composite differences to segment breaks and selects the
dominant change of every pixel.

Pipeline:

1. :func:`segment_differences` — for each segment and band, the year pair
   ``(y, y+1)`` whose window ``[y + correction, y + 1 + correction)``
   contains the segment's anchor time (its break by default) supplies
   ``before = composite(y)``, ``after = composite(y+1)`` and their
   difference.  Pairs are reduced with :func:`first_non_null` and segments
   without a matching pair are :func:`unmask`-ed to zero.
2. :func:`change_window_mask` — segments whose break lies in the change
   window are the candidates.
3. :func:`select_dominant` — the candidate with the largest absolute
   difference wins (exact equality, ties resolved by a configurable rule).
4. :func:`extract_changes` — gathers one :class:`ChangeRecord` per band
   from the winning segment.

Pixels with no candidate keep NaN values and segment index ``-1`` until
:meth:`ChangeRecord.filled` defaults them to zero.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Mapping, Sequence

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import BandNotFoundError, ConfigurationError
from shared.python.validators import Validators

from solar_change_mapper.composites import CompositeSeries
from solar_change_mapper.model import SegmentModel

logger = logging.getLogger("solar_change.changes")


# ---------------------------------------------------------------------------
# Null-handling combinators
# ---------------------------------------------------------------------------


def first_non_null(
    values: npt.ArrayLike,
    valid: npt.ArrayLike,
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.bool_]]:
    """Reduce the leading (candidate) axis to its first valid entry.

    Args:
        values: ``(K, ...)`` candidate values; broadcast against *valid*.
        valid: ``(K, ...)`` validity of each candidate.

    Returns:
        ``(result, found)`` where *result* holds the first valid value along
        axis 0 (NaN where no candidate is valid) and *found* flags pixels
        that had one.
    """
    valid = np.asarray(valid, dtype=bool)
    values = np.broadcast_to(np.asarray(values, dtype=np.float64), valid.shape)
    if valid.shape[0] == 0:
        empty = np.full(valid.shape[1:], np.nan)
        return empty, np.zeros(valid.shape[1:], dtype=bool)
    first = np.argmax(valid, axis=0)
    found = valid.any(axis=0)
    picked = np.take_along_axis(values, np.asarray(first)[np.newaxis], axis=0)[0]
    return np.where(found, picked, np.nan), found


def unmask(
    values: npt.ArrayLike,
    valid: npt.ArrayLike,
    default: float = 0.0,
) -> npt.NDArray[np.float64]:
    """Replace invalid entries by *default*."""
    return np.where(np.asarray(valid, dtype=bool), np.asarray(values, dtype=np.float64), default)


# ---------------------------------------------------------------------------
# Per-segment differences
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SegmentDifference:
    """Composite change attributed to every segment of one band.

    All arrays are ``(S, H, W)``; segments without a matching year pair
    hold zeros and ``valid == False``.
    """

    band: str
    difference: npt.NDArray[np.float64]
    before: npt.NDArray[np.float64]
    after: npt.NDArray[np.float64]
    valid: npt.NDArray[np.bool_]

    def zeroed(self, keep: npt.ArrayLike) -> "SegmentDifference":
        """Copy with the difference set to zero where not *keep*.

        ``before`` and ``after`` are composite values, not change evidence,
        and stay as they are.
        """
        return replace(self, difference=np.where(np.asarray(keep, dtype=bool), self.difference, 0.0))


def anchor_times(model: SegmentModel, anchor: str = "break") -> npt.NDArray[np.float64]:
    """``(S, H, W)`` fractional-year anchor of each segment (NaN = none).

    ``"break"`` uses the break time and treats ``0`` as "no break";
    ``"end"`` uses the end of the segment's fit.
    """
    Validators.assert_choice(anchor, ("break", "end"), "break anchor")
    if anchor == "end":
        raw = model.end_time
        times = np.asarray(model.time_base.decode(raw), dtype=np.float64)
        return np.where(np.isnan(raw), np.nan, times)
    raw = model.break_time
    times = np.asarray(model.time_base.decode(raw), dtype=np.float64)
    return np.where(np.isnan(raw) | (raw == 0), np.nan, times)


def segment_differences(
    model: SegmentModel,
    composites: CompositeSeries,
    bands: Sequence[str],
    correction: float,
    anchor: str = "break",
) -> dict[str, SegmentDifference]:
    """Attribute annual composite differences to segment anchors.

    Args:
        model: Segment model whose anchors are tested.
        composites: Annual composites of at least *bands*.
        bands: Bands to difference.
        correction: Window offset in fractional years.
        anchor: ``"break"`` or ``"end"``.

    Raises:
        BandNotFoundError: If a band has no composites.
    """
    Validators.assert_finite(correction, "correction")
    Validators.assert_bands_present(bands, composites.bands)
    years = composites.years
    pairs = [y for y in years[:-1] if y + 1 in years]

    anchors = anchor_times(model, anchor)
    shape = anchors.shape
    with np.errstate(invalid="ignore"):
        windows = np.stack([
            (anchors >= y + correction) & (anchors < y + 1 + correction) for y in pairs
        ]) if pairs else np.zeros((0,) + shape, dtype=bool)
    logger.debug("Testing %d year pair(s) against %s anchors", len(pairs), anchor)

    results: dict[str, SegmentDifference] = {}
    for band in bands:
        if pairs:
            before_c = np.stack([composites.get(y, band) for y in pairs])[:, np.newaxis]
            after_c = np.stack([composites.get(y + 1, band) for y in pairs])[:, np.newaxis]
        else:
            before_c = after_c = np.zeros((0, 1) + shape[1:])
        before, found = first_non_null(before_c, windows)
        after, _ = first_non_null(after_c, windows)
        results[band] = SegmentDifference(
            band=band,
            difference=unmask(after - before, found),
            before=unmask(before, found),
            after=unmask(after, found),
            valid=found,
        )
    return results


def max_abs_difference(
    diffs: Mapping[str, SegmentDifference],
    bands: Sequence[str] | None = None,
) -> npt.NDArray[np.float64]:
    """Per-segment maximum absolute difference across *bands*."""
    bands = list(bands or diffs)
    if not bands:
        raise ConfigurationError("max_abs_difference needs at least one band.")
    for band in bands:
        if band not in diffs:
            raise BandNotFoundError(band, list(diffs))
    return np.max(np.stack([np.abs(diffs[b].difference) for b in bands]), axis=0)


# ---------------------------------------------------------------------------
# Dominant change selection
# ---------------------------------------------------------------------------


def change_window_mask(model: SegmentModel, start: float, end: float) -> npt.NDArray[np.bool_]:
    """Segments with a (non-zero) break inside ``[start, end]``."""
    breaks = anchor_times(model, "break")
    with np.errstate(invalid="ignore"):
        return (breaks >= start) & (breaks <= end)


def select_dominant(
    candidates: npt.ArrayLike,
    valid: npt.ArrayLike,
    tie_break: str = "first",
) -> npt.NDArray[np.bool_]:
    """One-hot selection of the candidate with the largest ``|value|``.

    Candidates are compared by exact equality with the per-pixel maximum.
    When several match, ``tie_break="first"`` keeps the lowest index along
    the candidate axis and ``"last"`` the highest.  Pixels without any valid
    candidate select nothing.

    Args:
        candidates: ``(K, ...)`` signed values.
        valid: ``(K, ...)`` validity mask.
        tie_break: ``"first"`` or ``"last"``.
    """
    Validators.assert_choice(tie_break, ("first", "last"), "tie break")
    valid = np.asarray(valid, dtype=bool)
    values = np.broadcast_to(np.asarray(candidates, dtype=np.float64), valid.shape)
    valid = valid & ~np.isnan(values)
    magnitude = np.where(valid, np.abs(values), -np.inf)
    peak = magnitude.max(axis=0, initial=-np.inf)
    matched = valid & (magnitude == peak)

    k = matched.shape[0]
    if tie_break == "first":
        index = np.argmax(matched, axis=0)
    else:
        index = k - 1 - np.argmax(matched[::-1], axis=0)
    axis = np.arange(k).reshape((k,) + (1,) * (matched.ndim - 1))
    return (axis == index) & matched.any(axis=0)


def first_selection(valid: npt.ArrayLike) -> npt.NDArray[np.bool_]:
    """One-hot mask of the first valid candidate along axis 0."""
    valid = np.asarray(valid, dtype=bool)
    k = valid.shape[0]
    axis = np.arange(k).reshape((k,) + (1,) * (valid.ndim - 1))
    return (axis == np.argmax(valid, axis=0)) & valid.any(axis=0)


@dataclass(frozen=True)
class ChangeRecord:
    """Dominant change of one band, raster form.

    Attributes:
        band: Band name.
        segment_index: ``(H, W)`` winning segment (``-1`` = none).
        break_time: ``(H, W)`` break time of the winning segment.
        before: ``(H, W)`` composite before the break.
        after: ``(H, W)`` composite after the break.
        difference: ``(H, W)`` ``after - before``.
        valid: ``(H, W)`` pixels with a selected segment.
    """

    band: str
    segment_index: npt.NDArray[np.intp]
    break_time: npt.NDArray[np.float64]
    before: npt.NDArray[np.float64]
    after: npt.NDArray[np.float64]
    difference: npt.NDArray[np.float64]
    valid: npt.NDArray[np.bool_]

    def filled(self, default: float = 0.0) -> "ChangeRecord":
        """Copy with invalid pixels defaulted to *default*."""
        return replace(
            self,
            break_time=unmask(self.break_time, self.valid, default),
            before=unmask(self.before, self.valid, default),
            after=unmask(self.after, self.valid, default),
            difference=unmask(self.difference, self.valid, default),
        )


def _gather_record(
    band: str,
    diff: SegmentDifference,
    breaks: npt.NDArray[np.float64],
    selection: npt.NDArray[np.bool_],
) -> ChangeRecord:
    difference, found = first_non_null(diff.difference, selection)
    before, _ = first_non_null(diff.before, selection)
    after, _ = first_non_null(diff.after, selection)
    break_time, _ = first_non_null(breaks, selection)
    index = np.where(found, np.argmax(selection, axis=0), -1).astype(np.intp)
    return ChangeRecord(
        band=band,
        segment_index=index,
        break_time=break_time,
        before=before,
        after=after,
        difference=difference,
        valid=found,
    )


def extract_changes(
    model: SegmentModel,
    diffs: Mapping[str, SegmentDifference],
    bands: Sequence[str],
    window: tuple[float, float],
    strategy: str = "per_band",
    tie_break: str = "first",
) -> dict[str, ChangeRecord]:
    """Select the dominant change of every pixel and gather it per band.

    Args:
        model: Segment model (break times and segment presence).
        diffs: Output of :func:`segment_differences` (optionally zeroed by
               the rule classifier).
        bands: Tracked bands to report.
        window: ``(start, end)`` change window in fractional years.
        strategy: ``"per_band"`` — each band selects its own segment;
                  ``"max"`` — the per-segment maximum absolute difference
                  across *bands* selects one segment for all bands;
                  ``"first"`` — the first segment with a non-zero maximum.
        tie_break: Tie rule for ``per_band`` and ``max``.

    Returns:
        ``{band: ChangeRecord}`` with NaN / ``-1`` where nothing was selected.
    """
    Validators.assert_choice(strategy, ("per_band", "max", "first"), "selection strategy")
    for band in bands:
        if band not in diffs:
            raise BandNotFoundError(band, list(diffs))
    start, end = window
    if start > end:
        raise ConfigurationError(f"Change window is inverted: {start} > {end}.")

    candidates = change_window_mask(model, start, end)
    breaks = anchor_times(model, "break")
    logger.info("Selecting dominant change (%s, tie break %s)", strategy, tie_break)

    if strategy == "per_band":
        return {
            band: _gather_record(
                band, diffs[band], breaks, select_dominant(diffs[band].difference, candidates, tie_break)
            )
            for band in bands
        }

    driver = max_abs_difference(diffs, bands)
    if strategy == "max":
        selection = select_dominant(driver, candidates, tie_break)
    else:
        selection = first_selection(candidates & (driver != 0))
    return {band: _gather_record(band, diffs[band], breaks, selection) for band in bands}
