"""
Harmonic Evaluator
==================
Forward evaluation of piecewise-harmonic segment models.

A segment carries, per band, eight regression coefficients ordered
``[INTP, SLP, COS, SIN, COS2, SIN2, COS3, SIN3]``.  The forward model at
time ``t`` is::

    value(t) = c0 + c1·t + Σ_{k=1..3} [c_{2k}·cos(k·ω·t) + c_{2k+1}·sin(k·ω·t)]

where the angular frequency ``ω`` depends on the time encoding of the
model (:class:`TimeBase`).

Two entry levels are provided:

* scalar helpers over :class:`Segment` objects — :func:`resolve_segment`,
  :func:`evaluate`, :func:`amplitudes`;
* raster helpers over ``(S, H, W)`` stacks — :func:`resolve_segment_index`,
  :func:`harmonic_value`, :func:`mean_value`.

Queries outside a model's fitted range are never an error: the last
segment is extrapolated.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Mapping, Sequence

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import BandNotFoundError, ConfigurationError

logger = logging.getLogger("solar_change.harmonics")

COEF_NAMES: tuple[str, ...] = ("INTP", "SLP", "COS", "SIN", "COS2", "SIN2", "COS3", "SIN3")
N_COEFS = len(COEF_NAMES)
N_HARMONICS = 3

DAYS_PER_YEAR = 365.25
MS_PER_YEAR = 1000 * 60 * 60 * 24 * DAYS_PER_YEAR
UNIX_EPOCH_YEAR = 1970.0

EvaluationMode = Literal["peak", "mean"]


class TimeBase(Enum):
    """Time encoding of a segment model.

    The member values are the date-format codes used by the segmentation
    service (0 = Julian days, 1 = fractional years, 2 = Unix milliseconds).
    """

    JULIAN_DAYS = 0
    FRACTIONAL_YEARS = 1
    UNIX_MS = 2

    @property
    def omega(self) -> float:
        """Angular frequency of the fundamental (one cycle per year)."""
        return {
            TimeBase.JULIAN_DAYS: 2.0 * math.pi / DAYS_PER_YEAR,
            TimeBase.FRACTIONAL_YEARS: 2.0 * math.pi,
            TimeBase.UNIX_MS: 2.0 * math.pi / MS_PER_YEAR,
        }[self]

    def encode(self, year: float | npt.ArrayLike) -> float | npt.NDArray[np.float64]:
        """Convert a fractional year into this time base.

        Julian days count from year 0 and Unix milliseconds from 1970, both
        on a 365.25-day year.
        """
        year = np.asarray(year, dtype=np.float64)
        if self is TimeBase.JULIAN_DAYS:
            out = year * DAYS_PER_YEAR
        elif self is TimeBase.UNIX_MS:
            out = (year - UNIX_EPOCH_YEAR) * MS_PER_YEAR
        else:
            out = year
        return float(out) if out.ndim == 0 else out

    def decode(self, value: float | npt.ArrayLike) -> float | npt.NDArray[np.float64]:
        """Inverse of :meth:`encode`: time-base value → fractional year."""
        value = np.asarray(value, dtype=np.float64)
        if self is TimeBase.JULIAN_DAYS:
            out = value / DAYS_PER_YEAR
        elif self is TimeBase.UNIX_MS:
            out = value / MS_PER_YEAR + UNIX_EPOCH_YEAR
        else:
            out = value
        return float(out) if out.ndim == 0 else out

    @classmethod
    def parse(cls, value: "TimeBase | str | int") -> "TimeBase":
        """Accept a member, its name (case-insensitive) or its numeric code."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[str(value).strip().upper()]
        except KeyError as exc:
            valid = ", ".join(m.name.lower() for m in cls)
            raise ConfigurationError(f"Unknown time base {value!r}. Valid options: {valid}") from exc


# ---------------------------------------------------------------------------
# Scalar data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Segment:
    """One fitted regime of a pixel's time series.

    Attributes:
        start_time: First observation time covered by the fit.
        end_time: Last observation time covered by the fit.
        break_time: Time of the detected break that ends the segment
                    (``0.0`` when the segment ends without a break).
        coefs: Band name → 8 harmonic coefficients.
        rmse: Band name → fit RMSE.
        num_obs: Number of observations used for the fit.
        change_prob: Change-point probability at the segment end.
        magnitude: Band name → change magnitude reported at the break.
    """

    start_time: float
    end_time: float
    break_time: float
    coefs: Mapping[str, Sequence[float]]
    rmse: Mapping[str, float] = field(default_factory=dict)
    num_obs: int = 0
    change_prob: float = 0.0
    magnitude: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for band, values in self.coefs.items():
            if len(values) != N_COEFS:
                raise ConfigurationError(
                    f"Segment coefficients for '{band}' must have {N_COEFS} values, "
                    f"got {len(values)}."
                )

    def band_coefs(self, band: str) -> npt.NDArray[np.float64]:
        """Return the coefficient vector for *band* as a float64 array."""
        if band not in self.coefs:
            raise BandNotFoundError(band, list(self.coefs))
        return np.asarray(self.coefs[band], dtype=np.float64)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class HarmonicAmplitudes:
    """Static texture features of one segment and band.

    Attributes:
        slope: Linear trend coefficient.
        amp1: Amplitude of the annual harmonic.
        amp2: Amplitude of the semi-annual harmonic.
        amp3: Amplitude of the third harmonic.
        rmse: Fit RMSE of the segment.
    """

    slope: float
    amp1: float
    amp2: float
    amp3: float
    rmse: float


# ---------------------------------------------------------------------------
# Segment resolution
# ---------------------------------------------------------------------------


def resolve_segment(segments: Sequence[Segment], t: float) -> Segment:
    """Return the segment active at time *t*.

    The first segment (chronologically) whose ``end_time >= t`` wins.  When
    *t* lies beyond every segment the last one is returned so the model is
    extrapolated instead of failing.

    Raises:
        ConfigurationError: If *segments* is empty.
    """
    if not segments:
        raise ConfigurationError("Cannot resolve a segment from an empty segment list.")
    for segment in segments:
        if segment.end_time >= t:
            return segment
    return segments[-1]


def resolve_segment_index(
    end_times: npt.NDArray[np.floating],
    t: float,
) -> npt.NDArray[np.intp]:
    """Vectorised :func:`resolve_segment` over an ``(S, H, W)`` stack.

    NaN entries mark padding (no segment).  Returns an ``(H, W)`` index
    array; pixels without any segment get ``-1``.
    """
    end_times = np.asarray(end_times, dtype=np.float64)
    present = ~np.isnan(end_times)
    with np.errstate(invalid="ignore"):
        covers = present & (end_times >= t)

    n_present = present.sum(axis=0)
    last = n_present - 1

    first_cover = np.argmax(covers, axis=0)
    has_cover = covers.any(axis=0)
    index = np.where(has_cover, first_cover, last)
    return index.astype(np.intp)


# ---------------------------------------------------------------------------
# Forward model
# ---------------------------------------------------------------------------


def harmonic_value(
    coefs: npt.ArrayLike,
    t: float | npt.ArrayLike,
    omega: float,
) -> npt.NDArray[np.float64]:
    """Evaluate the full harmonic model.

    Args:
        coefs: Coefficients with the 8-term axis first, e.g. shape ``(8,)``
               or ``(8, H, W)``.
        t: Query time (scalar or broadcastable array).
        omega: Angular frequency from :attr:`TimeBase.omega`.
    """
    c = np.asarray(coefs, dtype=np.float64)
    t = np.asarray(t, dtype=np.float64)
    value = c[0] + c[1] * t
    for k in range(1, N_HARMONICS + 1):
        angle = k * omega * t
        value = value + c[2 * k] * np.cos(angle) + c[2 * k + 1] * np.sin(angle)
    return value


def mean_value(coefs: npt.ArrayLike, t: float | npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Evaluate only the intercept and slope (seasonality dropped)."""
    c = np.asarray(coefs, dtype=np.float64)
    return c[0] + c[1] * np.asarray(t, dtype=np.float64)


def evaluate(
    segment: Segment,
    band: str,
    t: float,
    time_base: TimeBase = TimeBase.FRACTIONAL_YEARS,
    mode: EvaluationMode = "peak",
) -> float:
    """Evaluate *segment*'s model for *band* at time *t*.

    ``mode="peak"`` uses the full harmonic model, ``mode="mean"`` only the
    intercept and slope.
    """
    coefs = segment.band_coefs(band)
    if mode == "mean":
        return float(mean_value(coefs, t))
    if mode != "peak":
        raise ConfigurationError(f"Unknown evaluation mode {mode!r}. Valid options: peak, mean")
    return float(harmonic_value(coefs, t, time_base.omega))


def amplitudes(segment: Segment, band: str) -> HarmonicAmplitudes:
    """Extract slope, per-harmonic amplitudes and RMSE for *band*."""
    c = segment.band_coefs(band)
    amps = [math.hypot(c[2 * k], c[2 * k + 1]) for k in range(1, N_HARMONICS + 1)]
    return HarmonicAmplitudes(
        slope=float(c[1]),
        amp1=amps[0],
        amp2=amps[1],
        amp3=amps[2],
        rmse=float(segment.rmse.get(band, float("nan"))),
    )


def amplitude_stack(coefs: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Raster form of the amplitude extraction.

    Args:
        coefs: ``(8, H, W)`` coefficients of the resolved segment.

    Returns:
        ``(3, H, W)`` array of harmonic amplitudes.
    """
    c = np.asarray(coefs, dtype=np.float64)
    return np.stack([np.hypot(c[2 * k], c[2 * k + 1]) for k in range(1, N_HARMONICS + 1)])
