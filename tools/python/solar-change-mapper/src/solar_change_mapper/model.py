"""
Segment Model
=============
Raster container for per-pixel segment models produced by the external
change-point segmentation service.

Every timing field is an ``(S, H, W)`` float array where ``S`` is the
maximum number of segments of any pixel; pixels with fewer segments are
NaN-padded at the end of the segment axis.  Coefficients are stored per
band as ``(S, 8, H, W)``.

Classes:
    SegmentModel    Immutable segment stack with resolve / synthesise helpers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import BandNotFoundError, ConfigurationError
from shared.python.validators import Validators

from solar_change_mapper.harmonics import (
    COEF_NAMES,
    N_COEFS,
    EvaluationMode,
    Segment,
    TimeBase,
    amplitude_stack,
    harmonic_value,
    mean_value,
    resolve_segment_index,
)

logger = logging.getLogger("solar_change.model")


def _frozen(array: npt.ArrayLike, dtype: type = np.float64) -> npt.NDArray:
    out = np.array(array, dtype=dtype, copy=True)
    out.setflags(write=False)
    return out


def gather(stack: npt.NDArray, index: npt.NDArray[np.intp]) -> npt.NDArray[np.float64]:
    """Pick ``stack[index[r, c], ..., r, c]`` for every pixel.

    Args:
        stack: Array with the segment axis first and ``(H, W)`` last.
        index: ``(H, W)`` segment index; ``-1`` yields NaN.
    """
    safe = np.clip(index, 0, None)
    expanded = safe.reshape((1,) + (1,) * (stack.ndim - 3) + safe.shape)
    picked = np.take_along_axis(stack, expanded, axis=0)[0].astype(np.float64)
    return np.where(index < 0, np.nan, picked)


@dataclass(frozen=True)
class SegmentModel:
    """Per-pixel segment models for one band group.

    Attributes:
        start_time: ``(S, H, W)`` segment start times.
        end_time: ``(S, H, W)`` segment end times.
        break_time: ``(S, H, W)`` break times (``0`` = no break).
        coefs: Band → ``(S, 8, H, W)`` harmonic coefficients.
        rmse: Band → ``(S, H, W)`` fit RMSE.
        magnitude: Band → ``(S, H, W)`` change magnitude at the break.
        num_obs: ``(S, H, W)`` observation counts.
        change_prob: ``(S, H, W)`` change-point probabilities.
        time_base: Time encoding shared by every time field.
    """

    start_time: npt.NDArray[np.float64]
    end_time: npt.NDArray[np.float64]
    break_time: npt.NDArray[np.float64]
    coefs: Mapping[str, npt.NDArray[np.float64]]
    rmse: Mapping[str, npt.NDArray[np.float64]] = field(default_factory=dict)
    magnitude: Mapping[str, npt.NDArray[np.float64]] = field(default_factory=dict)
    num_obs: npt.NDArray[np.float64] | None = None
    change_prob: npt.NDArray[np.float64] | None = None
    time_base: TimeBase = TimeBase.FRACTIONAL_YEARS

    def __post_init__(self) -> None:
        start = _frozen(self.start_time)
        if start.ndim != 3:
            raise ConfigurationError(
                f"Segment timing arrays must be (segments, rows, cols); got shape {start.shape}."
            )
        object.__setattr__(self, "start_time", start)
        for name in ("end_time", "break_time", "num_obs", "change_prob"):
            value = getattr(self, name)
            if value is None:
                continue
            value = _frozen(value)
            Validators.assert_raster_shapes_match(value.shape, start.shape, name, "start_time")
            object.__setattr__(self, name, value)

        if not self.coefs:
            raise ConfigurationError("A segment model needs coefficients for at least one band.")
        coefs: dict[str, npt.NDArray[np.float64]] = {}
        for band, values in self.coefs.items():
            values = _frozen(values)
            expected = (start.shape[0], N_COEFS) + start.shape[1:]
            Validators.assert_raster_shapes_match(
                values.shape, expected, f"{band} coefficients", "expected (S, 8, H, W)"
            )
            coefs[band] = values
        object.__setattr__(self, "coefs", coefs)

        for name in ("rmse", "magnitude"):
            checked: dict[str, npt.NDArray[np.float64]] = {}
            for band, values in getattr(self, name).items():
                values = _frozen(values)
                Validators.assert_raster_shapes_match(
                    values.shape, start.shape, f"{band} {name}", "start_time"
                )
                checked[band] = values
            object.__setattr__(self, name, checked)

        object.__setattr__(self, "time_base", TimeBase.parse(self.time_base))

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_pixel_segments(
        cls,
        pixels: Sequence[Sequence[Sequence[Segment]]],
        time_base: TimeBase = TimeBase.FRACTIONAL_YEARS,
    ) -> "SegmentModel":
        """Build a raster model from a 2-D grid of per-pixel segment lists.

        Args:
            pixels: ``pixels[row][col]`` is the ordered list of
                    :class:`~solar_change_mapper.harmonics.Segment` objects
                    of that pixel (may be empty).
        """
        rows = len(pixels)
        cols = len(pixels[0]) if rows else 0
        n_seg = max((len(p) for row in pixels for p in row), default=0)
        bands = sorted({b for row in pixels for p in row for s in p for b in s.coefs})
        if n_seg == 0 or not bands:
            raise ConfigurationError("Cannot build a segment model without any segment.")

        shape = (n_seg, rows, cols)
        start, end, brk, nobs, prob = (np.full(shape, np.nan) for _ in range(5))
        coefs = {b: np.full((n_seg, N_COEFS, rows, cols), np.nan) for b in bands}
        rmse = {b: np.full(shape, np.nan) for b in bands}
        magnitude = {b: np.full(shape, np.nan) for b in bands}

        for r, row in enumerate(pixels):
            for c, segments in enumerate(row):
                for i, seg in enumerate(segments):
                    start[i, r, c] = seg.start_time
                    end[i, r, c] = seg.end_time
                    brk[i, r, c] = seg.break_time
                    nobs[i, r, c] = seg.num_obs
                    prob[i, r, c] = seg.change_prob
                    for band in bands:
                        if band in seg.coefs:
                            coefs[band][i, :, r, c] = seg.coefs[band]
                        rmse[band][i, r, c] = seg.rmse.get(band, np.nan)
                        magnitude[band][i, r, c] = seg.magnitude.get(band, np.nan)

        return cls(
            start_time=start,
            end_time=end,
            break_time=brk,
            coefs=coefs,
            rmse=rmse,
            magnitude=magnitude,
            num_obs=nobs,
            change_prob=prob,
            time_base=time_base,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def bands(self) -> list[str]:
        return list(self.coefs)

    @property
    def n_segments(self) -> int:
        return int(self.start_time.shape[0])

    @property
    def shape(self) -> tuple[int, int]:
        return (int(self.start_time.shape[1]), int(self.start_time.shape[2]))

    @property
    def present(self) -> npt.NDArray[np.bool_]:
        """``(S, H, W)`` mask of real (non-padding) segments."""
        return ~np.isnan(self.end_time)

    @property
    def duration(self) -> npt.NDArray[np.float64]:
        return self.end_time - self.start_time

    def require_bands(self, bands: Sequence[str]) -> None:
        """Raise :class:`BandNotFoundError` if a band has no coefficients."""
        Validators.assert_bands_present(bands, self.bands)

    # ------------------------------------------------------------------
    # Per-pixel view
    # ------------------------------------------------------------------

    def segments_at(self, row: int, col: int) -> list[Segment]:
        """Return the ordered :class:`Segment` list of one pixel."""
        segments: list[Segment] = []
        for i in range(self.n_segments):
            if np.isnan(self.end_time[i, row, col]):
                continue
            segments.append(Segment(
                start_time=float(self.start_time[i, row, col]),
                end_time=float(self.end_time[i, row, col]),
                break_time=float(self.break_time[i, row, col]),
                coefs={b: tuple(float(v) for v in c[i, :, row, col]) for b, c in self.coefs.items()},
                rmse={b: float(v[i, row, col]) for b, v in self.rmse.items()},
                num_obs=int(np.nan_to_num(self.num_obs[i, row, col])) if self.num_obs is not None else 0,
                change_prob=float(self.change_prob[i, row, col]) if self.change_prob is not None else 0.0,
                magnitude={b: float(v[i, row, col]) for b, v in self.magnitude.items()},
            ))
        return segments

    # ------------------------------------------------------------------
    # Raster evaluation
    # ------------------------------------------------------------------

    def resolve(self, t: float) -> npt.NDArray[np.intp]:
        """``(H, W)`` index of the segment active at *t* (``-1`` = none)."""
        return resolve_segment_index(self.end_time, t)

    def coefs_at(self, band: str, t: float) -> npt.NDArray[np.float64]:
        """``(8, H, W)`` coefficients of the segment active at *t*."""
        if band not in self.coefs:
            raise BandNotFoundError(band, self.bands)
        return gather(self.coefs[band], self.resolve(t))

    def synthesize(self, band: str, t: float, mode: EvaluationMode = "peak") -> npt.NDArray[np.float64]:
        """Synthetic ``(H, W)`` value of *band* at time *t*.

        Pixels without any segment are NaN.
        """
        coefs = self.coefs_at(band, t)
        if mode == "mean":
            return mean_value(coefs, t)
        if mode != "peak":
            raise ConfigurationError(f"Unknown evaluation mode {mode!r}. Valid options: peak, mean")
        return harmonic_value(coefs, t, self.time_base.omega)

    def amplitude_features(
        self,
        bands: Sequence[str],
        t: float,
    ) -> dict[str, npt.NDArray[np.float64]]:
        """Slope, amplitudes and RMSE of the segment active at *t*.

        Output names follow ``<band>_SLP_LAST``, ``<band>_AMP1_LAST``,
        ``<band>_AMP2_LAST``, ``<band>_AMP3_LAST`` and ``<band>_RMSE_LAST``.
        """
        self.require_bands(bands)
        index = self.resolve(t)
        features: dict[str, npt.NDArray[np.float64]] = {}
        for band in bands:
            coefs = gather(self.coefs[band], index)
            amps = amplitude_stack(coefs)
            features[f"{band}_SLP_LAST"] = coefs[COEF_NAMES.index("SLP")]
            for k in range(amps.shape[0]):
                features[f"{band}_AMP{k + 1}_LAST"] = amps[k]
            if band in self.rmse:
                features[f"{band}_RMSE_LAST"] = gather(self.rmse[band], index)
            else:
                features[f"{band}_RMSE_LAST"] = np.full(self.shape, np.nan)
        return features
