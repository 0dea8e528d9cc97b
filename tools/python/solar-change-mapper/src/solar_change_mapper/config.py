"""
Configuration
=============
Immutable configuration structs passed by value into every component.

Classes:
    RuleThresholds      Threshold constants of the change rules.
    RuleBands           Rule role → tracked band name.
    OmissionThresholds  Probability cut-offs of the omission pass.
    ScreenThresholds    Final-year plausibility bounds of a change product.
    ChangeConfig        Everything the extraction pipeline needs.

Two rule presets ship with the package — ``"confirmed"`` and
``"possible"`` — which differ only in their constants::

    from solar_change_mapper.config import RuleThresholds

    strict = RuleThresholds.preset("confirmed")
    loose = RuleThresholds.preset("possible")

All structs validate themselves on construction and raise
:class:`~shared.python.exceptions.ConfigurationError` on caller mistakes.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Literal, Mapping

from shared.python.exceptions import ConfigurationError, InputValidationError
from shared.python.validators import Validators

from solar_change_mapper.harmonics import DAYS_PER_YEAR, TimeBase

logger = logging.getLogger("solar_change.config")

SelectionStrategy = Literal["per_band", "max", "first"]
TieBreak = Literal["first", "last"]
BreakAnchor = Literal["break", "end"]

SELECTION_STRATEGIES: tuple[str, ...] = ("per_band", "max", "first")
TIE_BREAKS: tuple[str, ...] = ("first", "last")
ANCHORS: tuple[str, ...] = ("break", "end")
COMPOSITE_MODES: tuple[str, ...] = ("peak", "mean")

# Floor substituted for a zero threshold on the "disable-able" rule inputs.
DISABLED_FLOOR = -20000.0


# ---------------------------------------------------------------------------
# Rule thresholds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuleThresholds:
    """Threshold constants of the seven change rules.

    Values are in the scaled integer units of the composites (reflectance
    fractions and normalised indices × 10 000).

    Attributes:
        bright_increase: Minimum rise of the bright band (BRIGHT).
        bright_soil_magnitude: Minimum soil magnitude accompanying BRIGHT.
                               ``0`` disables the requirement.
        dark_soil_decrease: Maximum (negative) soil change (DARK).
        dark_low_increase: Minimum rise of the dark band (DARK).
        greening: Greenness rise that vetoes a change (GREENING).
        revegetation: Final-year greenness that vetoes a change (REVEGETATION).
        water: Post-change spectral mean at or below which the pixel is
               treated as water (WATER).  ``0`` disables the veto.
        fast_bright: Bright-band magnitude of a rapid brightening (FAST_BRIGHT).
        fast_bright_low_stable: Maximum |dark change| for FAST_BRIGHT.
        fast_dark_change: Minimum soil + dark change (FAST_DARK).
        fast_dark_total: Minimum soil + dark post-change level (FAST_DARK).
    """

    bright_increase: float = 500.0
    bright_soil_magnitude: float = 400.0
    dark_soil_decrease: float = -800.0
    dark_low_increase: float = 800.0
    greening: float = 1000.0
    revegetation: float = 3500.0
    water: float = 800.0
    fast_bright: float = 1600.0
    fast_bright_low_stable: float = 600.0
    fast_dark_change: float = 1600.0
    fast_dark_total: float = 4000.0

    def __post_init__(self) -> None:
        for f in fields(self):
            Validators.assert_finite(getattr(self, f.name), f.name)

    @property
    def soil_floor(self) -> float:
        return self.bright_soil_magnitude if self.bright_soil_magnitude != 0 else DISABLED_FLOOR

    @property
    def water_floor(self) -> float:
        return self.water if self.water != 0 else DISABLED_FLOOR

    @classmethod
    def preset(cls, name: str) -> "RuleThresholds":
        """Return a named preset (``"confirmed"`` or ``"possible"``)."""
        key = name.strip().lower()
        if key not in RULE_PRESETS:
            Validators.assert_choice(key, tuple(RULE_PRESETS), "rule preset")
        return RULE_PRESETS[key]


RULE_PRESETS: dict[str, RuleThresholds] = {
    "confirmed": RuleThresholds(),
    "possible": RuleThresholds(
        bright_increase=300.0,
        bright_soil_magnitude=0.0,
        dark_soil_decrease=-500.0,
        dark_low_increase=500.0,
        greening=2000.0,
        revegetation=5000.0,
        water=500.0,
        fast_bright=1000.0,
        fast_bright_low_stable=1000.0,
        fast_dark_change=1000.0,
        fast_dark_total=2000.0,
    ),
}


@dataclass(frozen=True)
class RuleBands:
    """Which tracked band plays each role in the rules.

    Attributes:
        bright: High-albedo endmember fraction.
        dark: Low-albedo endmember fraction.
        soil: Soil endmember fraction.
        greenness: Vegetation index (NDVI).
        water: Spectral-mean band used by the water veto.
    """

    bright: str = "High"
    dark: str = "Low"
    soil: str = "Soil"
    greenness: str = "NDVI"
    water: str = "SPM"

    def as_dict(self) -> dict[str, str]:
        return asdict(self)

    def validate_against(self, tracked: list[str]) -> None:
        """Raise :class:`ConfigurationError` if a role's band is not tracked."""
        missing = [f"{role}={band}" for role, band in self.as_dict().items() if band not in tracked]
        if missing:
            raise ConfigurationError(
                "Rule band(s) not among the tracked bands: "
                f"{', '.join(missing)}. Tracked: {', '.join(tracked)}"
            )


# ---------------------------------------------------------------------------
# Omission correction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OmissionThresholds:
    """Cut-offs and buffer tiers of the omission-correction pass.

    Attributes:
        deforestation_probability: Class-2 pixels whose deforestation
            probability is below this value stay class 2; the rest of the
            class-2 pixels with evidence are rejected (class 6).
        fuzzy_probability: No-change pixels below this fuzzy change
            probability are omission candidates.
        no_break_probability: Pixels outside classes 2/3 below this
            no-break probability are omission candidates.
        buffer_value: Value that marks a pixel as inside the first buffer tier.
        second_buffer_value: Value that marks the second buffer tier.
    """

    deforestation_probability: float = 0.66
    fuzzy_probability: float = 0.5
    no_break_probability: float = 0.5
    buffer_value: int = 1
    second_buffer_value: int = 1

    def __post_init__(self) -> None:
        Validators.assert_probability(self.deforestation_probability, "deforestation_probability")
        Validators.assert_probability(self.fuzzy_probability, "fuzzy_probability")
        Validators.assert_probability(self.no_break_probability, "no_break_probability")


# ---------------------------------------------------------------------------
# Final-year screen
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScreenThresholds:
    """Plausibility bounds on the final-year composites of a change product.

    Pixels whose final-year surface does not look like a built-up or
    installed site fail the screen.  Bounds are inclusive and in the scaled
    units of the composites.

    Attributes:
        ndvi_max: Upper bound of the final NDVI.
        albedo_min: Lower bound of the final albedo.
        albedo_max: Upper bound of the final albedo.
        ndti_min: Lower bound of the final NDTI.
        bsi_min: Lower bound of the final bare-soil index.
        ndbi_min: Lower bound of the final built-up index.
        ndvi_difference_max: Guard against extreme NDVI differences.
        ndvi_decrease: NDVI difference at or below which a pixel counts as
                       a strong NDVI decrease.
    """

    ndvi_max: float = 9000.0
    albedo_min: float = 500.0
    albedo_max: float = 3000.0
    ndti_min: float = -4500.0
    bsi_min: float = -3000.0
    ndbi_min: float = -3000.0
    ndvi_difference_max: float = 10000.0
    ndvi_decrease: float = -2000.0

    def __post_init__(self) -> None:
        for f in fields(self):
            Validators.assert_finite(getattr(self, f.name), f.name)
        if self.albedo_min > self.albedo_max:
            raise ConfigurationError(
                f"albedo_min ({self.albedo_min}) is above albedo_max ({self.albedo_max})."
            )

    def bounds(self) -> dict[str, tuple[float | None, float | None]]:
        """Band → ``(lower, upper)`` bound; ``None`` leaves a side open."""
        return {
            "NDVI": (None, self.ndvi_max),
            "Albedo": (self.albedo_min, self.albedo_max),
            "NDTI": (self.ndti_min, None),
            "BSI": (self.bsi_min, None),
            "NDBI": (self.ndbi_min, None),
        }


# ---------------------------------------------------------------------------
# Extraction pipeline
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChangeConfig:
    """Configuration of the change-extraction pipeline.

    Attributes:
        bands: Tracked spectral bands (composited and differenced).
        spectral_mean_bands: Bands averaged into the ``SPM`` composite band.
                             Empty disables the derived band.
        change_start: Start of the change window (fractional year).
        change_end: End of the change window (fractional year).
        start_year: First composite year; defaults to ``floor(change_start)``.
        end_year: Last composite year; defaults to ``floor(change_end)``.
        day_of_year: Composite anchor day (peak summer = 202).
        correction: Break-window offset in years; defaults to
                    ``day_of_year / 365.25``.
        time_base: Time encoding of the segment model.
        composite_mode: ``"peak"`` (full harmonic) or ``"mean"``.
        anchor: Segment time tested against the yearly windows
                (``"break"`` or ``"end"``).
        selection_strategy: Dominant-change selection (``"per_band"``,
                            ``"max"`` or ``"first"``).
        tie_break: Which candidate wins exact ties (``"first"``/``"last"``).
        rule_preset: Preset name used for the confirmed rule pass.
        rule_bands: Rule role → band name.
        amplitude_bands: Bands reported as static amplitude features.
        filter_spurious: Drop short, steep, early segments before the rules.
        omission: Thresholds of the omission-correction pass.
        screen: Final-year screen and NDVI-decrease threshold.
    """

    bands: tuple[str, ...] = ("High", "Low", "Soil", "Vege", "NDVI", "Albedo", "TEMP")
    spectral_mean_bands: tuple[str, ...] = ("High", "Low", "Soil", "Vege")
    change_start: float = 2005.0
    change_end: float = 2024.997
    start_year: int | None = None
    end_year: int | None = None
    day_of_year: float = 202.0
    correction: float | None = None
    time_base: TimeBase = TimeBase.FRACTIONAL_YEARS
    composite_mode: str = "peak"
    anchor: str = "break"
    selection_strategy: str = "first"
    tie_break: str = "first"
    rule_preset: str = "confirmed"
    rule_bands: RuleBands = field(default_factory=RuleBands)
    amplitude_bands: tuple[str, ...] = ("NDVI", "Albedo", "TEMP")
    filter_spurious: bool = True
    omission: OmissionThresholds = field(default_factory=OmissionThresholds)
    screen: ScreenThresholds = field(default_factory=ScreenThresholds)

    def __post_init__(self) -> None:
        object.__setattr__(self, "bands", tuple(self.bands))
        object.__setattr__(self, "spectral_mean_bands", tuple(self.spectral_mean_bands))
        object.__setattr__(self, "amplitude_bands", tuple(self.amplitude_bands))
        object.__setattr__(self, "time_base", TimeBase.parse(self.time_base))
        if isinstance(self.rule_bands, Mapping):
            object.__setattr__(self, "rule_bands", RuleBands(**self.rule_bands))
        if isinstance(self.omission, Mapping):
            object.__setattr__(self, "omission", OmissionThresholds(**self.omission))
        if isinstance(self.screen, Mapping):
            object.__setattr__(self, "screen", ScreenThresholds(**self.screen))

        Validators.assert_band_list_valid(self.bands, "bands")
        unknown_mean = [b for b in self.spectral_mean_bands if b not in self.bands]
        if unknown_mean:
            raise ConfigurationError(
                f"spectral_mean_bands must be tracked bands; unknown: {', '.join(unknown_mean)}"
            )
        Validators.assert_finite(self.change_start, "change_start")
        Validators.assert_finite(self.change_end, "change_end")
        if self.change_start > self.change_end:
            raise ConfigurationError(
                f"change_start ({self.change_start}) is after change_end ({self.change_end})."
            )
        if self.start_year is None:
            object.__setattr__(self, "start_year", int(math.floor(self.change_start)))
        if self.end_year is None:
            object.__setattr__(self, "end_year", int(math.floor(self.change_end)))
        Validators.assert_year_range(self.start_year, self.end_year)

        Validators.assert_finite(self.day_of_year, "day_of_year")
        if not 0 <= self.day_of_year <= 366:
            raise ConfigurationError(f"day_of_year must lie in [0, 366], got {self.day_of_year}.")
        if self.correction is None:
            object.__setattr__(self, "correction", self.day_of_year / DAYS_PER_YEAR)
        Validators.assert_finite(self.correction, "correction")

        Validators.assert_choice(self.composite_mode, COMPOSITE_MODES, "composite mode")
        Validators.assert_choice(self.anchor, ANCHORS, "break anchor")
        Validators.assert_choice(self.selection_strategy, SELECTION_STRATEGIES, "selection strategy")
        Validators.assert_choice(self.tie_break, TIE_BREAKS, "tie break")
        RuleThresholds.preset(self.rule_preset)

        self.rule_bands.validate_against(self.tracked_bands)

    @property
    def tracked_bands(self) -> list[str]:
        """Composited bands, including the derived ``SPM`` band if enabled."""
        tracked = list(self.bands)
        if self.spectral_mean_bands:
            tracked.append("SPM")
        return tracked

    @property
    def thresholds(self) -> RuleThresholds:
        return RuleThresholds.preset(self.rule_preset)

    def with_overrides(self, **changes: Any) -> "ChangeConfig":
        """Return a copy with *changes* applied (validated again).

        Moving the change window re-derives the composite years, and moving
        the anchor day re-derives the correction, unless they are part of
        *changes*.
        """
        if "change_start" in changes or "change_end" in changes:
            changes.setdefault("start_year", None)
            changes.setdefault("end_year", None)
        if "day_of_year" in changes:
            changes.setdefault("correction", None)
        return replace(self, **changes)

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChangeConfig":
        """Build a config from a plain mapping (e.g. parsed JSON).

        Raises:
            ConfigurationError: On unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration key(s): {', '.join(unknown)}")
        kwargs = dict(data)
        try:
            if isinstance(kwargs.get("rule_bands"), Mapping):
                kwargs["rule_bands"] = RuleBands(**kwargs["rule_bands"])
            if isinstance(kwargs.get("omission"), Mapping):
                kwargs["omission"] = OmissionThresholds(**kwargs["omission"])
            if isinstance(kwargs.get("screen"), Mapping):
                kwargs["screen"] = ScreenThresholds(**kwargs["screen"])
        except TypeError as exc:
            raise ConfigurationError(f"Invalid nested configuration: {exc}") from exc
        for key in ("bands", "spectral_mean_bands", "amplitude_bands"):
            if key in kwargs:
                kwargs[key] = tuple(kwargs[key])
        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: Path) -> "ChangeConfig":
        """Load a config from a JSON file.

        Raises:
            InputValidationError: If the file is missing or not valid JSON.
            ConfigurationError: If the content is not a valid config.
        """
        Validators.assert_file_exists(path)
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise InputValidationError(f"Configuration file '{path}' is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file '{path}' must contain a JSON object.")
        logger.debug("Loaded configuration from %s", path)
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["time_base"] = self.time_base.name.lower()
        return data
