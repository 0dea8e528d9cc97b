"""
Spatial Fill-in
===============
Connected-component filter that keeps confirmed-change patches above a
minimum size and fills possible-change patches that touch them.

For each pixel:

* ``confirmed_size`` — size of its confirmed-change component;
* ``possible_size`` — size of its possible-change component;
* ``remainder_size`` — size of its possible-change component after the
  kept confirmed patches are removed.

``filled`` is 1 on kept confirmed pixels (``confirmed_size > min_patch_size``)
and on the remaining possible pixels whose component shrank
(``remainder_size < possible_size``), so a possible patch that was partly
absorbed by a kept confirmed patch is filled in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import numpy.typing as npt
from scipy.ndimage import generate_binary_structure, label as ndi_label

from shared.python.exceptions import ConfigurationError
from shared.python.validators import Validators

logger = logging.getLogger("solar_change.spatial")


def component_sizes(mask: npt.ArrayLike, connectivity: int = 1) -> npt.NDArray[np.int64]:
    """Size of the connected component of every ``True`` pixel (0 elsewhere).

    Args:
        mask: ``(H, W)`` boolean mask.
        connectivity: ``1`` for 4-neighbours, ``2`` for 8-neighbours.
    """
    if connectivity not in (1, 2):
        raise ConfigurationError(f"connectivity must be 1 or 2, got {connectivity!r}.")
    mask = np.asarray(mask, dtype=bool)
    structure = generate_binary_structure(2, connectivity)
    labeled, n_feats = ndi_label(mask, structure=structure)  # type: ignore[misc]
    counts = np.bincount(labeled.ravel(), minlength=n_feats + 1)
    counts[0] = 0
    return counts[labeled]


@dataclass(frozen=True)
class SpatialFill:
    confirmed_size: npt.NDArray[np.int64]
    possible_size: npt.NDArray[np.int64]
    remainder_size: npt.NDArray[np.int64]
    filled: npt.NDArray[np.uint8]

    @property
    def mask(self) -> npt.NDArray[np.bool_]:
        return self.filled > 0


def spatial_fill(
    confirmed: npt.ArrayLike,
    possible: npt.ArrayLike,
    min_patch_size: int = 8,
    connectivity: int = 1,
) -> SpatialFill:
    """Keep large confirmed patches and fill the possible patches they touch.

    Args:
        confirmed: ``(H, W)`` confirmed-change mask.
        possible: ``(H, W)`` possible-change mask.
        min_patch_size: Confirmed patches must be strictly larger.
        connectivity: ``1`` for 4-neighbours, ``2`` for 8-neighbours.
    """
    confirmed = np.asarray(confirmed, dtype=bool)
    possible = np.asarray(possible, dtype=bool)
    Validators.assert_raster_shapes_match(confirmed.shape, possible.shape, "confirmed", "possible")
    if min_patch_size < 0:
        raise ConfigurationError(f"min_patch_size must be >= 0, got {min_patch_size}.")

    confirmed_size = component_sizes(confirmed, connectivity)
    possible_size = component_sizes(possible, connectivity)
    kept = confirmed_size > min_patch_size
    remainder_size = component_sizes(possible & ~kept, connectivity)

    absorbed = possible & ~kept & (remainder_size < possible_size)
    filled = kept.astype(np.uint8) + absorbed.astype(np.uint8)
    logger.info(
        "Spatial fill-in: %d confirmed pixel(s) kept, %d possible pixel(s) filled",
        int(kept.sum()), int(absorbed.sum()),
    )
    return SpatialFill(
        confirmed_size=confirmed_size,
        possible_size=possible_size,
        remainder_size=remainder_size,
        filled=filled,
    )
