"""
Final-Year Screen
=================
Heuristic screening of a change product on its final-year composites.

Two masks are produced:

* ``passed`` (``MASK2``): every final-year bound holds;
* ``guarded`` (``MASK``): ``passed`` and the NDVI difference stays below
  the extreme-value guard.

:func:`ndvi_decrease_mask` derives the strong NDVI-decrease layer
(``mask_NDVI``) consumed by the first buffer overwrite of the omission
pass.

Bounds on bands that are not composited are skipped, so the default
screen can run on any band set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import BandNotFoundError, ConfigurationError

from solar_change_mapper.changes import ChangeRecord
from solar_change_mapper.config import ScreenThresholds

logger = logging.getLogger("solar_change.screening")


@dataclass(frozen=True)
class FinalYearScreen:
    """Outcome of :func:`final_year_screen`.

    Attributes:
        passed: ``(H, W)`` pixels inside every applicable final-year bound.
        guarded: ``passed`` restricted by the NDVI-difference guard.
        skipped: Bounded bands absent from the final-year composites.
    """

    passed: npt.NDArray[np.bool_]
    guarded: npt.NDArray[np.bool_]
    skipped: tuple[str, ...]


def _within(
    values: npt.ArrayLike,
    lower: float | None,
    upper: float | None,
) -> npt.NDArray[np.bool_]:
    values = np.asarray(values, dtype=np.float64)
    inside = ~np.isnan(values)
    with np.errstate(invalid="ignore"):
        if lower is not None:
            inside &= values >= lower
        if upper is not None:
            inside &= values <= upper
    return inside


def final_year_screen(
    final: Mapping[str, npt.ArrayLike],
    thresholds: ScreenThresholds = ScreenThresholds(),
    ndvi_difference: npt.ArrayLike | None = None,
) -> FinalYearScreen:
    """Apply the final-year bounds of *thresholds*.

    Args:
        final: Band → final-year composite.
        thresholds: Screen bounds.
        ndvi_difference: Selected NDVI difference for the guard; without it
                         ``guarded`` equals ``passed``.

    Raises:
        ConfigurationError: If *final* is empty.
    """
    if not final:
        raise ConfigurationError("The final-year screen needs at least one final composite.")
    shape = np.shape(next(iter(final.values())))
    passed = np.ones(shape, dtype=bool)
    skipped: list[str] = []
    for band, (lower, upper) in thresholds.bounds().items():
        if band not in final:
            skipped.append(band)
            continue
        passed &= _within(final[band], lower, upper)
    if skipped:
        logger.info("Final-year screen skips untracked band(s): %s", ", ".join(skipped))

    guarded = passed.copy()
    if ndvi_difference is not None:
        guarded &= _within(ndvi_difference, None, thresholds.ndvi_difference_max)
    logger.debug(
        "Final-year screen kept %d pixel(s), %d after the NDVI guard",
        int(passed.sum()), int(guarded.sum()),
    )
    return FinalYearScreen(passed=passed, guarded=guarded, skipped=tuple(skipped))


def ndvi_decrease_mask(
    records: Mapping[str, ChangeRecord],
    threshold: float = -2000.0,
    band: str = "NDVI",
) -> npt.NDArray[np.bool_]:
    """Pixels whose selected *band* difference is at or below *threshold*.

    Raises:
        BandNotFoundError: If *records* has no record for *band*.
    """
    if band not in records:
        raise BandNotFoundError(band, list(records))
    return _within(records[band].difference, None, threshold)
