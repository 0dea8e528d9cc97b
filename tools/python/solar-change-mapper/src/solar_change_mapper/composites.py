"""
Annual Composite Builder
========================
Synthesises one raster per (year, band) from a :class:`SegmentModel`.

For every integer year in ``[start_year, end_year]`` the query time is
``year + day_of_year / 365.25``; each pixel's active segment is resolved
and its harmonic model evaluated in ``peak`` (full) or ``mean``
(intercept + slope) mode.  Years beyond the model's coverage are
extrapolated from the last segment.

An optional ``SPM`` band holds the per-pixel mean of a fixed spectral
subset of the composited bands.

Usage::

    series = build_composites(
        model, ["High", "Low", "Soil", "NDVI"], 2005, 2024,
        spectral_mean_bands=["High", "Low", "Soil"],
    )
    ndvi_2010 = series.get(2010, "NDVI")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Sequence

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import ConfigurationError
from shared.python.validators import Validators

from solar_change_mapper.harmonics import DAYS_PER_YEAR, EvaluationMode
from solar_change_mapper.model import SegmentModel

logger = logging.getLogger("solar_change.composites")

SPECTRAL_MEAN_BAND = "SPM"


@dataclass(frozen=True)
class AnnualComposite:
    """Synthetic raster of one band for one year."""

    year: int
    band: str
    value: npt.NDArray[np.float64]


class CompositeSeries:
    """Finite, restartable, year-indexed collection of composites.

    Iterating yields :class:`AnnualComposite` objects ordered by year and
    then by band; iteration can be repeated any number of times.
    """

    def __init__(self, composites: Sequence[AnnualComposite]) -> None:
        self._items: dict[tuple[int, str], AnnualComposite] = {}
        for composite in composites:
            self._items[(composite.year, composite.band)] = composite
        self._years = sorted({year for year, _ in self._items})
        self._bands: list[str] = []
        for composite in composites:
            if composite.band not in self._bands:
                self._bands.append(composite.band)

    def __iter__(self) -> Iterator[AnnualComposite]:
        for year in self._years:
            for band in self._bands:
                if (year, band) in self._items:
                    yield self._items[(year, band)]

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    @property
    def years(self) -> list[int]:
        return list(self._years)

    @property
    def bands(self) -> list[str]:
        return list(self._bands)

    def get(self, year: int, band: str) -> npt.NDArray[np.float64]:
        """Return the composite raster of *band* in *year*.

        Raises:
            ConfigurationError: If no composite exists for the pair.
        """
        try:
            return self._items[(int(year), band)].value
        except KeyError as exc:
            raise ConfigurationError(
                f"No composite for year {year} and band '{band}'. "
                f"Years: {self._years[0] if self._years else '-'}–"
                f"{self._years[-1] if self._years else '-'}, bands: {', '.join(self._bands)}"
            ) from exc

    def stack(self, band: str) -> npt.NDArray[np.float64]:
        """``(Y, H, W)`` stack of *band* over all years."""
        Validators.assert_bands_present([band], self._bands)
        return np.stack([self.get(year, band) for year in self._years])

    def final_values(
        self,
        bands: Sequence[str] | None = None,
        year: int | None = None,
    ) -> dict[str, npt.NDArray[np.float64]]:
        """Composite of each band in the final (or given) year.

        Keys are the band names; writers prefix them with ``Final_``.
        """
        if not self._years:
            raise ConfigurationError("Composite series is empty.")
        year = self._years[-1] if year is None else year
        return {band: self.get(year, band) for band in (bands or self._bands)}


def composite_time(year: int, day_of_year: float) -> float:
    """Fractional-year query time of a composite."""
    return year + day_of_year / DAYS_PER_YEAR


def build_composites(
    model: SegmentModel,
    bands: Sequence[str],
    start_year: int,
    end_year: int,
    day_of_year: float = 202.0,
    mode: EvaluationMode = "peak",
    spectral_mean_bands: Sequence[str] | None = None,
) -> CompositeSeries:
    """Build the annual composites of *bands*.

    Args:
        model: Segment model to evaluate.
        bands: Bands to composite.
        start_year: First year (inclusive).
        end_year: Last year (inclusive).
        day_of_year: Anchor day of the query time.
        mode: ``"peak"`` or ``"mean"``.
        spectral_mean_bands: Bands averaged into the derived ``SPM`` band.

    Raises:
        ConfigurationError: On an inverted year range, unknown mode or a
            spectral-mean band that is not composited.
        BandNotFoundError: If the model lacks a requested band.
    """
    Validators.assert_band_list_valid(list(bands), "bands")
    Validators.assert_year_range(start_year, end_year)
    Validators.assert_choice(mode, ("peak", "mean"), "composite mode")
    model.require_bands(bands)
    mean_bands = list(spectral_mean_bands or [])
    unknown = [b for b in mean_bands if b not in bands]
    if unknown:
        raise ConfigurationError(
            f"Spectral-mean band(s) {', '.join(unknown)} are not among the composited bands."
        )

    logger.info(
        "Building %s composites for %d band(s), %d–%d (day %.1f)",
        mode, len(bands), start_year, end_year, day_of_year,
    )
    composites: list[AnnualComposite] = []
    for year in range(int(start_year), int(end_year) + 1):
        t = model.time_base.encode(composite_time(year, day_of_year))
        values: dict[str, npt.NDArray[np.float64]] = {}
        for band in bands:
            values[band] = model.synthesize(band, t, mode)
            composites.append(AnnualComposite(year, band, values[band]))
        if mean_bands:
            spm = np.mean(np.stack([values[b] for b in mean_bands]), axis=0)
            composites.append(AnnualComposite(year, SPECTRAL_MEAN_BAND, spm))
        logger.debug("Composited year %d", year)

    return CompositeSeries(composites)
