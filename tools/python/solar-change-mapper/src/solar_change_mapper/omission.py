"""
Omission Corrector
==================
Second-pass relabelling of an externally produced solar classification map.

Transitions are ordered overwrites on a copy of the label raster — a later
step overwrites a pixel even if an earlier one already set it:

1. first buffer tier with an NDVI decrease        → 2
2. first buffer tier without an NDVI decrease     → 4
3. second buffer tier                             → 4
4. class-2 pixels with a valid deforestation probability become
   deforestation candidates where it is below the threshold
5. pixels of the *input* map flagged by the fuzzy (class 1) or no-break
   (classes other than 2/3) probability, currently class 1 → 5
6. deforestation candidates → 2; remaining class-2 pixels with
   evidence → 6

A missing layer, or a NaN pixel in a probability layer, is "no evidence":
the corresponding mask is false and nothing fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum

import numpy as np
import numpy.typing as npt

from shared.python.validators import Validators

from solar_change_mapper.config import OmissionThresholds

logger = logging.getLogger("solar_change.omission")

DEFAULT_PIXEL_AREA_M2 = 30.0 * 30.0


class ClassLabel(IntEnum):
    NO_CHANGE = 1
    SOLAR_DEFORESTATION = 2
    SOLAR_OTHER = 3
    BUFFER = 4
    POTENTIAL_OMISSION = 5
    REJECTED_OMISSION = 6


@dataclass(frozen=True)
class OmissionLayers:
    """Inputs of the omission pass; every layer except *labels* is optional.

    Attributes:
        labels: ``(H, W)`` class map (values 1..6).
        buffer: First buffer tier (pixel value ``buffer_value`` = inside).
        ndvi_decrease: Non-zero where NDVI decreased.
        second_buffer: Second buffer tier.
        fuzzy_probability: Fuzzy change probability in [0, 1].
        no_break_probability: Probability that the pixel has no break.
        deforestation_probability: Probability used to resolve class-2
            pixels; the fuzzy probability is used when omitted.
    """

    labels: npt.NDArray
    buffer: npt.NDArray | None = None
    ndvi_decrease: npt.NDArray | None = None
    second_buffer: npt.NDArray | None = None
    fuzzy_probability: npt.NDArray | None = None
    no_break_probability: npt.NDArray | None = None
    deforestation_probability: npt.NDArray | None = None

    def __post_init__(self) -> None:
        shape = np.shape(self.labels)
        for name in (
            "buffer", "ndvi_decrease", "second_buffer",
            "fuzzy_probability", "no_break_probability", "deforestation_probability",
        ):
            layer = getattr(self, name)
            if layer is not None:
                Validators.assert_raster_shapes_match(np.shape(layer), shape, name, "labels")


@dataclass(frozen=True)
class OmissionResult:
    """Corrected labels plus the intermediate masks (for diagnostics)."""

    labels: npt.NDArray[np.int16]
    deforestation_candidates: npt.NDArray[np.bool_]
    change_omissions: npt.NDArray[np.bool_]
    rejected: npt.NDArray[np.bool_]


def _equals(layer: npt.NDArray | None, value: float, shape: tuple[int, ...]) -> npt.NDArray[np.bool_]:
    if layer is None:
        return np.zeros(shape, dtype=bool)
    with np.errstate(invalid="ignore"):
        return np.asarray(layer) == value


def _truthy(layer: npt.NDArray | None, shape: tuple[int, ...]) -> npt.NDArray[np.bool_]:
    if layer is None:
        return np.zeros(shape, dtype=bool)
    layer = np.asarray(layer, dtype=np.float64)
    return ~np.isnan(layer) & (layer != 0)


def _below(layer: npt.NDArray | None, threshold: float, shape: tuple[int, ...]) -> npt.NDArray[np.bool_]:
    if layer is None:
        return np.zeros(shape, dtype=bool)
    layer = np.asarray(layer, dtype=np.float64)
    with np.errstate(invalid="ignore"):
        return ~np.isnan(layer) & (layer < threshold)


class OmissionCorrector:
    """Applies the ordered omission-correction overwrites.

    Args:
        thresholds: Probability cut-offs and buffer tiers.
    """

    def __init__(self, thresholds: OmissionThresholds = OmissionThresholds()) -> None:
        self.thresholds = thresholds

    def correct(self, layers: OmissionLayers) -> OmissionResult:
        t = self.thresholds
        original = np.asarray(layers.labels).astype(np.int16)
        shape = original.shape
        labels = original.copy()

        buffer = _equals(layers.buffer, t.buffer_value, shape)
        decrease = _truthy(layers.ndvi_decrease, shape)
        labels[buffer & decrease] = ClassLabel.SOLAR_DEFORESTATION
        labels[buffer & ~decrease] = ClassLabel.BUFFER
        labels[_equals(layers.second_buffer, t.second_buffer_value, shape)] = ClassLabel.BUFFER

        probability = layers.deforestation_probability
        if probability is None:
            probability = layers.fuzzy_probability
        if probability is None:
            evidence = np.zeros(shape, dtype=bool)
        else:
            evidence = (labels == ClassLabel.SOLAR_DEFORESTATION) & ~np.isnan(
                np.asarray(probability, dtype=np.float64)
            )
        candidates = evidence & _below(probability, t.deforestation_probability, shape)

        fuzzy_flag = (original == ClassLabel.NO_CHANGE) & _below(
            layers.fuzzy_probability, t.fuzzy_probability, shape
        )
        no_break_flag = _below(layers.no_break_probability, t.no_break_probability, shape) & ~np.isin(
            original, [ClassLabel.SOLAR_DEFORESTATION, ClassLabel.SOLAR_OTHER]
        )
        omissions = (labels == ClassLabel.NO_CHANGE) & (fuzzy_flag | no_break_flag)
        labels[omissions] = ClassLabel.POTENTIAL_OMISSION

        rejected = evidence & ~candidates
        labels[candidates] = ClassLabel.SOLAR_DEFORESTATION
        labels[rejected] = ClassLabel.REJECTED_OMISSION

        logger.info(
            "Omission pass: %d potential omission(s), %d deforestation kept, %d rejected",
            int(omissions.sum()), int(candidates.sum()), int(rejected.sum()),
        )
        return OmissionResult(
            labels=labels,
            deforestation_candidates=candidates,
            change_omissions=omissions,
            rejected=rejected,
        )


def class_areas(
    labels: npt.ArrayLike,
    pixel_area_m2: float = DEFAULT_PIXEL_AREA_M2,
) -> dict[ClassLabel, float]:
    """Area in km² of every class label."""
    Validators.assert_finite(pixel_area_m2, "pixel_area_m2")
    labels = np.asarray(labels)
    return {
        label: float(np.count_nonzero(labels == label)) * pixel_area_m2 / 1e6
        for label in ClassLabel
    }
