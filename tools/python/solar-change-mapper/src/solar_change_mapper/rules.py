"""
Rule Classifier
===============
Per-segment threshold rules that confirm or reject a candidate change,
with bit-packed provenance.

Rules (thresholds from :class:`~solar_change_mapper.config.RuleThresholds`):

=============  ========  ===============================================
Rule           Kind      Predicate
=============  ========  ===============================================
BRIGHT         positive  bright rises and soil magnitude is high enough
DARK           positive  soil falls while the dark band rises
GREENING       veto      greenness rises (difference or magnitude)
REVEGETATION   veto      final-year greenness is high
WATER          veto      post-change spectral mean is water-like
FAST_BRIGHT    positive  large bright magnitude, dark band stable
FAST_DARK      positive  soil + dark change and post level both high
=============  ========  ===============================================

``confirmed = any(positive) and not any(veto)``.  Every outcome plus the
combined bit is packed into a :data:`RuleMask` integer by a Horner fold
(``value = value * 2 + bit``) over :data:`FOLD_ORDER` followed by the
combined bit, so bit 0 is the combined decision.

Usage::

    classifier = RuleClassifier(RuleThresholds.preset("confirmed"), tracked=bands)
    result = classifier.classify(model, diffs, series.final_values())
    confirmed_dif = result.differences["NDVI"].difference
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Mapping, Sequence

import numpy as np
import numpy.typing as npt

from shared.python.exceptions import ConfigurationError
from shared.python.validators import Validators

from solar_change_mapper.changes import SegmentDifference
from solar_change_mapper.config import RuleBands, RuleThresholds
from solar_change_mapper.model import SegmentModel

logger = logging.getLogger("solar_change.rules")


class Rule(IntEnum):
    """Change rules, numbered as in the calibration tables."""

    BRIGHT = 1
    DARK = 2
    GREENING = 3
    REVEGETATION = 5
    WATER = 6
    FAST_BRIGHT = 7
    FAST_DARK = 8

    @property
    def is_veto(self) -> bool:
        return self in VETO_RULES


POSITIVE_RULES: frozenset[Rule] = frozenset({Rule.BRIGHT, Rule.DARK, Rule.FAST_BRIGHT, Rule.FAST_DARK})
VETO_RULES: frozenset[Rule] = frozenset({Rule.GREENING, Rule.REVEGETATION, Rule.WATER})

# Highest bit first; the combined decision follows as bit 0.
FOLD_ORDER: tuple[Rule, ...] = tuple(sorted(Rule, reverse=True))


# ---------------------------------------------------------------------------
# RuleMask encoding
# ---------------------------------------------------------------------------


def encode_rule_mask(bits: Sequence, combined) -> int | npt.NDArray[np.uint16]:
    """Pack rule outcomes and the combined bit into one integer.

    Args:
        bits: Outcomes in fold order (scalars or equally shaped arrays).
        combined: Combined decision, appended as bit 0.

    Example::

        >>> encode_rule_mask([1, 0, 1, 1, 0, 0, 1], 1)
        179
    """
    if len(bits) + 1 > 16:
        raise ConfigurationError("A rule mask holds at most 15 rules plus the combined bit.")
    arrays = [np.asarray(b) for b in bits] + [np.asarray(combined)]
    if all(a.ndim == 0 for a in arrays):
        value = 0
        for a in arrays:
            value = value * 2 + int(bool(a))
        return value
    value = np.zeros(np.broadcast_shapes(*(a.shape for a in arrays)), dtype=np.uint16)
    for a in arrays:
        value = value * np.uint16(2) + a.astype(bool).astype(np.uint16)
    return value


def decode_rule_mask(value, n_rules: int = len(FOLD_ORDER)) -> tuple[list, object]:
    """Inverse of :func:`encode_rule_mask`.

    Returns:
        ``(bits, combined)`` with *bits* in fold order.  Scalars decode to
        ints, arrays to boolean arrays.
    """
    if np.ndim(value) == 0:
        v = int(value)
        bits = [(v >> (n_rules - i)) & 1 for i in range(n_rules)]
        return bits, v & 1
    v = np.asarray(value).astype(np.uint16)
    bits = [((v >> (n_rules - i)) & 1).astype(bool) for i in range(n_rules)]
    return bits, (v & 1).astype(bool)


# ---------------------------------------------------------------------------
# Rule evaluation
# ---------------------------------------------------------------------------


def evaluate_rules(
    difference: Mapping[str, npt.ArrayLike],
    magnitude: Mapping[str, npt.ArrayLike],
    after: Mapping[str, npt.ArrayLike],
    final: Mapping[str, npt.ArrayLike],
    thresholds: RuleThresholds,
    bands: RuleBands = RuleBands(),
) -> dict[Rule, npt.NDArray[np.bool_]]:
    """Evaluate every rule; NaN inputs make a predicate false.

    Args:
        difference: Band → composite difference across the break.
        magnitude: Band → change magnitude at the break.
        after: Band → composite after the break.
        final: Band → final-year composite (broadcast over segments).
        thresholds: Threshold constants.
        bands: Role → band mapping.
    """
    t = thresholds
    dif = {k: np.asarray(v, dtype=np.float64) for k, v in difference.items()}
    mag = {k: np.asarray(v, dtype=np.float64) for k, v in magnitude.items()}
    aft = {k: np.asarray(v, dtype=np.float64) for k, v in after.items()}
    fin = {k: np.asarray(v, dtype=np.float64) for k, v in final.items()}

    with np.errstate(invalid="ignore"):
        outcomes = {
            Rule.BRIGHT: (dif[bands.bright] >= t.bright_increase) & (mag[bands.soil] >= t.soil_floor),
            Rule.DARK: (dif[bands.soil] <= t.dark_soil_decrease) & (dif[bands.dark] >= t.dark_low_increase),
            Rule.GREENING: (dif[bands.greenness] >= t.greening) | (mag[bands.greenness] >= t.greening),
            Rule.REVEGETATION: fin[bands.greenness] >= t.revegetation,
            Rule.WATER: aft[bands.water] <= t.water_floor,
            Rule.FAST_BRIGHT: (mag[bands.bright] >= t.fast_bright)
            & (np.abs(dif[bands.dark]) <= t.fast_bright_low_stable),
            Rule.FAST_DARK: (dif[bands.soil] + dif[bands.dark] >= t.fast_dark_change)
            & (aft[bands.soil] + aft[bands.dark] >= t.fast_dark_total),
        }
    shape = np.broadcast_shapes(*(o.shape for o in outcomes.values()))
    return {rule: np.broadcast_to(o, shape).copy() for rule, o in outcomes.items()}


def combine(outcomes: Mapping[Rule, npt.NDArray[np.bool_]]) -> npt.NDArray[np.bool_]:
    """``any(positive) and not any(veto)``."""
    positive = np.logical_or.reduce([outcomes[r] for r in sorted(POSITIVE_RULES)])
    veto = np.logical_or.reduce([outcomes[r] for r in sorted(VETO_RULES)])
    return positive & ~veto


# ---------------------------------------------------------------------------
# Spurious segment filter
# ---------------------------------------------------------------------------


def spurious_segment_mask(
    model: SegmentModel,
    bands: Sequence[str],
    max_duration: float = 1.5,
    slope_limit: float = 500.0,
    before_year: float = 2014.0,
) -> npt.NDArray[np.bool_]:
    """``(S, H, W)`` mask of short, steep, early segments.

    A segment is spurious when ``0 < duration < max_duration`` years, the
    largest absolute slope (per year) over *bands* exceeds *slope_limit* and
    it starts before *before_year*.
    """
    model.require_bands(bands)
    tb = model.time_base
    start = np.asarray(tb.decode(model.start_time), dtype=np.float64)
    duration = np.asarray(tb.decode(model.end_time), dtype=np.float64) - start
    per_year = float(tb.encode(1.0)) - float(tb.encode(0.0))
    slopes = np.stack([np.abs(model.coefs[b][:, 1]) * per_year for b in bands])
    with np.errstate(invalid="ignore"):
        steep = np.max(np.where(np.isnan(slopes), -np.inf, slopes), axis=0) > slope_limit
        return (duration > 0) & (duration < max_duration) & steep & (start < before_year)


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleClassification:
    """Result of one rule pass.

    Attributes:
        outcomes: Rule → ``(S, H, W)`` boolean outcome.
        confirmed: ``(S, H, W)`` combined decision.
        rule_masks: ``(S, H, W)`` packed uint16 rule masks.
        differences: Band → segment differences with the difference of
                     unconfirmed segments zeroed.
    """

    outcomes: dict[Rule, npt.NDArray[np.bool_]]
    confirmed: npt.NDArray[np.bool_]
    rule_masks: npt.NDArray[np.uint16]
    differences: dict[str, SegmentDifference]


class RuleClassifier:
    """Applies one threshold preset to every segment.

    Args:
        thresholds: Threshold constants.
        bands: Role → band mapping.
        tracked: Bands available to the classifier; every role's band must
                 be one of them.

    Raises:
        ConfigurationError: If a role's band is not tracked.
    """

    def __init__(
        self,
        thresholds: RuleThresholds,
        bands: RuleBands = RuleBands(),
        tracked: Sequence[str] | None = None,
    ) -> None:
        if not isinstance(thresholds, RuleThresholds):
            raise ConfigurationError(
                f"thresholds must be a RuleThresholds instance, got {type(thresholds).__name__}."
            )
        self.thresholds = thresholds
        self.bands = bands
        if tracked is not None:
            Validators.assert_band_list_valid(list(tracked), "tracked bands")
            bands.validate_against(list(tracked))
        self.tracked = list(tracked) if tracked is not None else None

    def classify(
        self,
        model: SegmentModel,
        diffs: Mapping[str, SegmentDifference],
        final: Mapping[str, npt.ArrayLike],
        spurious: npt.ArrayLike | None = None,
    ) -> RuleClassification:
        """Evaluate, combine and pack the rules for every segment.

        Args:
            model: Segment model (magnitudes and segment presence).
            diffs: Per-band segment differences.
            final: Band → final-year composite.
            spurious: Optional ``(S, H, W)`` mask of segments removed
                      before the rules.
        """
        roles = list(self.bands.as_dict().values())
        Validators.assert_bands_present(roles, list(diffs))
        Validators.assert_bands_present([self.bands.greenness], list(final))

        present = model.present
        keep = present if spurious is None else present & ~np.asarray(spurious, dtype=bool)
        diffs = {band: d.zeroed(keep) for band, d in diffs.items()}

        nan = np.full(present.shape, np.nan)
        magnitude = {band: model.magnitude.get(band, nan) for band in roles}
        outcomes = evaluate_rules(
            difference={b: d.difference for b, d in diffs.items()},
            magnitude=magnitude,
            after={b: d.after for b, d in diffs.items()},
            final={b: np.asarray(final[b])[np.newaxis] for b in final},
            thresholds=self.thresholds,
            bands=self.bands,
        )
        outcomes = {rule: o & keep for rule, o in outcomes.items()}
        confirmed = combine(outcomes)
        rule_masks = encode_rule_mask([outcomes[r] for r in FOLD_ORDER], confirmed)

        logger.info(
            "Rules confirmed %d of %d segment(s)",
            int(confirmed.sum()), int(keep.sum()),
        )
        for rule in FOLD_ORDER:
            logger.debug("  %-13s %d", rule.name, int(outcomes[rule].sum()))

        return RuleClassification(
            outcomes=outcomes,
            confirmed=confirmed,
            rule_masks=np.asarray(rule_masks, dtype=np.uint16),
            differences={band: d.zeroed(confirmed) for band, d in diffs.items()},
        )
