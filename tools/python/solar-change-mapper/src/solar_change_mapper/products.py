"""
Year Products
=============
Per-pixel event years derived from the corrected class map and the
per-band break times of the change product, plus yearly area summaries.

Functions:
    deforestation_year   Break year of NDVI for solar-with-deforestation pixels.
    installation_year    Installation year of every solar pixel (classes 2|3).
    annual_area          km² per year of a year raster.
"""

from __future__ import annotations

import logging

import numpy as np
import numpy.typing as npt

from shared.python.validators import Validators

from solar_change_mapper.omission import DEFAULT_PIXEL_AREA_M2, ClassLabel

logger = logging.getLogger("solar_change.products")


def _floor_year(values: npt.NDArray[np.float64], mask: npt.NDArray[np.bool_]) -> npt.NDArray[np.int16]:
    valid = mask & np.isfinite(values) & (values != 0)
    years = np.floor(np.where(valid, values, 0.0))
    return years.astype(np.int16)


def deforestation_year(labels: npt.ArrayLike, ndvi_break: npt.ArrayLike) -> npt.NDArray[np.int16]:
    """Year of the NDVI break for class-2 pixels; ``0`` elsewhere."""
    labels = np.asarray(labels)
    ndvi_break = np.asarray(ndvi_break, dtype=np.float64)
    Validators.assert_raster_shapes_match(labels.shape, ndvi_break.shape, "labels", "NDVI break")
    return _floor_year(ndvi_break, labels == ClassLabel.SOLAR_DEFORESTATION)


def installation_year(
    labels: npt.ArrayLike,
    ndvi_break: npt.ArrayLike,
    albedo_break: npt.ArrayLike,
) -> npt.NDArray[np.int16]:
    """Installation year of classes 2 and 3; ``0`` elsewhere.

    The NDVI break dates the installation, except on class-2 pixels whose
    albedo break comes first, which use the albedo break.
    """
    labels = np.asarray(labels)
    ndvi_break = np.asarray(ndvi_break, dtype=np.float64)
    albedo_break = np.asarray(albedo_break, dtype=np.float64)
    Validators.assert_raster_shapes_match(labels.shape, ndvi_break.shape, "labels", "NDVI break")
    Validators.assert_raster_shapes_match(labels.shape, albedo_break.shape, "labels", "albedo break")

    with np.errstate(invalid="ignore"):
        use_albedo = (labels == ClassLabel.SOLAR_DEFORESTATION) & (ndvi_break > albedo_break)
    adjusted = np.where(use_albedo, albedo_break, ndvi_break)
    solar = np.isin(labels, [ClassLabel.SOLAR_DEFORESTATION, ClassLabel.SOLAR_OTHER])
    return _floor_year(adjusted, solar)


def annual_area(
    year_raster: npt.ArrayLike,
    start_year: int,
    end_year: int,
    pixel_area_m2: float = DEFAULT_PIXEL_AREA_M2,
) -> dict[int, float]:
    """Area in km² of each year in ``[start_year, end_year]``."""
    Validators.assert_year_range(start_year, end_year)
    Validators.assert_finite(pixel_area_m2, "pixel_area_m2")
    years = np.asarray(year_raster)
    areas = {
        year: float(np.count_nonzero(years == year)) * pixel_area_m2 / 1e6
        for year in range(int(start_year), int(end_year) + 1)
    }
    logger.debug("Annual areas: %s", areas)
    return areas
