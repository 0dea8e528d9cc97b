"""
Pipelines
=========
End-to-end wiring of the change-extraction and omission-correction passes.

Functions:
    run_extraction          Pure pipeline over an in-memory SegmentModel.

Classes:
    ChangeProduct           Result of :func:`run_extraction`.
    ChangeExtractionTool    Segment stack GeoTIFF → change product GeoTIFF.
    OmissionCorrectionTool  Class map + evidence GeoTIFFs → corrected map.

Usage::

    from pathlib import Path
    from solar_change_mapper.pipeline import ChangeExtractionTool

    ChangeExtractionTool(
        Path("data/ccdc_segments.tif"),
        Path("output/chg.tif"),
        ChangeConfig(change_start=2010.0, change_end=2023.9),
    ).run()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

import numpy as np
import numpy.typing as npt

from shared.python.base_tool import GeoTool
from shared.python.validators import Validators

from solar_change_mapper.changes import ChangeRecord, extract_changes, segment_differences
from solar_change_mapper.composites import build_composites, composite_time
from solar_change_mapper.config import ChangeConfig, OmissionThresholds, RuleThresholds
from solar_change_mapper.io import (
    read_band,
    read_named_bands,
    read_segment_model,
    write_bands,
)
from solar_change_mapper.model import SegmentModel
from solar_change_mapper.omission import (
    DEFAULT_PIXEL_AREA_M2,
    ClassLabel,
    OmissionCorrector,
    OmissionLayers,
    OmissionResult,
    class_areas,
)
from solar_change_mapper.products import deforestation_year, installation_year
from solar_change_mapper.rules import RuleClassification, RuleClassifier, spurious_segment_mask
from solar_change_mapper.screening import FinalYearScreen, final_year_screen, ndvi_decrease_mask
from solar_change_mapper.spatial import SpatialFill, spatial_fill

logger = logging.getLogger("solar_change.pipeline")

SUPPORTED_EXTENSIONS = [".tif", ".tiff"]
NDVI_DECREASE_LAYER = "mask_NDVI"


# ---------------------------------------------------------------------------
# In-memory pipeline
# ---------------------------------------------------------------------------


def changed_pixels(records: Mapping[str, ChangeRecord]) -> npt.NDArray[np.bool_]:
    """Pixels where any band carries a non-zero selected difference."""
    return np.logical_or.reduce(
        [r.valid & (np.nan_to_num(r.difference) != 0) for r in records.values()]
    )


@dataclass(frozen=True)
class ChangeProduct:
    """Everything produced by one extraction run.

    Attributes:
        confirmed: Band → filled change record of the confirmed pass.
        possible: Band → filled change record of the possible pass.
        confirmed_rules: Rule pass with the configured preset.
        possible_rules: Rule pass with the ``"possible"`` preset.
        final_values: Band → final-year composite.
        amplitudes: Static amplitude features of the last segment.
        spatial: Connected-component fill-in of the two passes.
        screen: Final-year screen of the confirmed change.
        ndvi_decrease: Strong NDVI decrease of the confirmed change.
    """

    confirmed: dict[str, ChangeRecord]
    possible: dict[str, ChangeRecord]
    confirmed_rules: RuleClassification
    possible_rules: RuleClassification
    final_values: dict[str, npt.NDArray[np.float64]]
    amplitudes: dict[str, npt.NDArray[np.float64]]
    spatial: SpatialFill
    screen: FinalYearScreen
    ndvi_decrease: npt.NDArray[np.bool_]

    def layers(self) -> dict[str, npt.NDArray[np.float64]]:
        """Named output layers in writing order."""
        out: dict[str, npt.NDArray[np.float64]] = {}
        for band, record in self.confirmed.items():
            out[f"{band}_DIF"] = record.difference
            out[f"{band}_tBreak"] = record.break_time
        for band, record in self.possible.items():
            out[f"{band}_DIF_PSB"] = record.difference
        for band, value in self.final_values.items():
            out[f"Final_{band}"] = value
        out.update(self.amplitudes)
        for k, mask in enumerate(self.confirmed_rules.rule_masks, start=1):
            out[f"S{k}_RuleMask"] = mask.astype(np.float64)
        for k, mask in enumerate(self.possible_rules.rule_masks, start=1):
            out[f"S{k}_RuleMask_PSB"] = mask.astype(np.float64)
        out["cfmSize"] = self.spatial.confirmed_size.astype(np.float64)
        out["psbSize"] = self.spatial.possible_size.astype(np.float64)
        out["difSize"] = self.spatial.remainder_size.astype(np.float64)
        out["filled"] = self.spatial.filled.astype(np.float64)
        out["MASK"] = self.screen.guarded.astype(np.float64)
        out["MASK2"] = self.screen.passed.astype(np.float64)
        out[NDVI_DECREASE_LAYER] = self.ndvi_decrease.astype(np.float64)
        return out


def run_extraction(
    model: SegmentModel,
    config: ChangeConfig,
    min_patch_size: int = 8,
) -> ChangeProduct:
    """Composite, difference, classify and select changes for *model*.

    Raises:
        ConfigurationError: If the config does not fit the model.
        BandNotFoundError: If the model lacks a configured band.
    """
    tracked = config.tracked_bands
    if model.time_base is not config.time_base:
        logger.warning(
            "Segment model is encoded in %s, config says %s; using the model's time base",
            model.time_base.name.lower(), config.time_base.name.lower(),
        )
    model.require_bands(config.bands)
    model.require_bands(config.amplitude_bands)

    series = build_composites(
        model,
        config.bands,
        config.start_year,
        config.end_year,
        day_of_year=config.day_of_year,
        mode=config.composite_mode,
        spectral_mean_bands=config.spectral_mean_bands,
    )
    diffs = segment_differences(model, series, tracked, config.correction, config.anchor)
    spurious = spurious_segment_mask(model, config.bands) if config.filter_spurious else None
    if spurious is not None:
        logger.info("Filtered %d spurious segment(s)", int(spurious.sum()))
    final = series.final_values(tracked)
    window = (config.change_start, config.change_end)

    passes: list[tuple[RuleClassification, dict[str, ChangeRecord]]] = []
    for thresholds in (config.thresholds, RuleThresholds.preset("possible")):
        classifier = RuleClassifier(thresholds, config.rule_bands, tracked)
        classification = classifier.classify(model, diffs, final, spurious)
        records = extract_changes(
            model,
            classification.differences,
            tracked,
            window,
            strategy=config.selection_strategy,
            tie_break=config.tie_break,
        )
        passes.append((classification, {b: r.filled() for b, r in records.items()}))
    (confirmed_rules, confirmed), (possible_rules, possible) = passes

    last_t = model.time_base.encode(composite_time(config.end_year, config.day_of_year))
    amplitudes = model.amplitude_features(config.amplitude_bands, last_t)
    spatial = spatial_fill(changed_pixels(confirmed), changed_pixels(possible), min_patch_size)
    greenness = config.rule_bands.greenness
    screen = final_year_screen(final, config.screen, confirmed[greenness].difference)
    decrease = ndvi_decrease_mask(confirmed, config.screen.ndvi_decrease, greenness)

    return ChangeProduct(
        confirmed=confirmed,
        possible=possible,
        confirmed_rules=confirmed_rules,
        possible_rules=possible_rules,
        final_values=final,
        amplitudes=amplitudes,
        spatial=spatial,
        screen=screen,
        ndvi_decrease=decrease,
    )


# ---------------------------------------------------------------------------
# File-driven tools
# ---------------------------------------------------------------------------


class ChangeExtractionTool(GeoTool):
    """Extract confirmed and possible changes from a segment-model GeoTIFF.

    Inherits the Template Method pipeline from :class:`~shared.python.GeoTool`.

    Args:
        input_path: Segment-model stack (see :mod:`solar_change_mapper.io`).
        output_path: Destination GeoTIFF of the change product.
        config: A :class:`ChangeConfig` instance.
        min_patch_size: Confirmed patches must be larger to be kept.
        verbose: Enable DEBUG-level logging.
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        config: ChangeConfig | None = None,
        min_patch_size: int = 8,
        *,
        verbose: bool = False,
    ) -> None:
        super().__init__(input_path, output_path, verbose=verbose)
        self.config = config or ChangeConfig()
        self.min_patch_size = min_patch_size
        self._product: ChangeProduct | None = None

    def validate_inputs(self) -> None:
        Validators.assert_file_exists(self.input_path)
        Validators.assert_supported_extension(self.input_path, SUPPORTED_EXTENSIONS)
        Validators.assert_output_dir_writable(self.output_path)
        logger.debug("Inputs validated.")

    def process(self) -> None:
        needed = list(dict.fromkeys(self.config.bands + self.config.amplitude_bands))
        model, profile = read_segment_model(self.input_path, needed, self.config.time_base)
        self._product = run_extraction(model, self.config, self.min_patch_size)
        write_bands(self.output_path, self._product.layers(), profile)

    @property
    def product(self) -> ChangeProduct | None:
        return self._product


class OmissionCorrectionTool(GeoTool):
    """Relabel likely missed detections in a solar classification map.

    Every evidence layer is optional; a missing layer means "no evidence".
    When *change_path* points at a change product with ``NDVI_tBreak`` and
    ``Albedo_tBreak`` bands, the output also carries the deforestation and
    installation years, and its ``mask_NDVI`` band stands in for a missing
    NDVI-decrease layer.

    Args:
        input_path: Class map GeoTIFF (values 1..6).
        output_path: Destination GeoTIFF.
        buffer_path: First buffer tier.
        ndvi_decrease_path: NDVI-decrease mask (``mask_NDVI`` of the change
                            product when omitted).
        second_buffer_path: Second buffer tier.
        fuzzy_path: Fuzzy change probability.
        no_break_path: No-break probability.
        deforestation_path: Deforestation probability (fuzzy when omitted).
        change_path: Change product from :class:`ChangeExtractionTool`.
        thresholds: Omission thresholds.
        pixel_area_m2: Pixel area; taken from the raster transform when
                       ``None``.
        verbose: Enable DEBUG-level logging.
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        *,
        buffer_path: Path | None = None,
        ndvi_decrease_path: Path | None = None,
        second_buffer_path: Path | None = None,
        fuzzy_path: Path | None = None,
        no_break_path: Path | None = None,
        deforestation_path: Path | None = None,
        change_path: Path | None = None,
        thresholds: OmissionThresholds | None = None,
        pixel_area_m2: float | None = None,
        verbose: bool = False,
    ) -> None:
        super().__init__(input_path, output_path, verbose=verbose)
        self.layer_paths: dict[str, Path | None] = {
            "buffer": buffer_path,
            "ndvi_decrease": ndvi_decrease_path,
            "second_buffer": second_buffer_path,
            "fuzzy_probability": fuzzy_path,
            "no_break_probability": no_break_path,
            "deforestation_probability": deforestation_path,
        }
        self.change_path = Path(change_path) if change_path is not None else None
        self.thresholds = thresholds or OmissionThresholds()
        self.pixel_area_m2 = pixel_area_m2
        self._result: OmissionResult | None = None
        self._areas: dict[ClassLabel, float] = {}

    def validate_inputs(self) -> None:
        Validators.assert_file_exists(self.input_path)
        Validators.assert_supported_extension(self.input_path, SUPPORTED_EXTENSIONS)
        for path in list(self.layer_paths.values()) + [self.change_path]:
            if path is not None:
                Validators.assert_file_exists(path)
        Validators.assert_output_dir_writable(self.output_path)
        logger.debug("Inputs validated.")

    def process(self) -> None:
        labels, profile = read_band(self.input_path)
        labels = np.nan_to_num(labels, nan=0).astype(np.int16)
        change_bands = ["NDVI_tBreak", "Albedo_tBreak"]
        if self.layer_paths["ndvi_decrease"] is None:
            change_bands.append(NDVI_DECREASE_LAYER)
        change = read_named_bands(self.change_path, change_bands) if self.change_path is not None else {}

        layers: dict[str, npt.NDArray[np.float64] | None] = {}
        for name, path in self.layer_paths.items():
            if name == "ndvi_decrease" and path is None and NDVI_DECREASE_LAYER in change:
                logger.info("Using %s of the change product as the NDVI-decrease layer", NDVI_DECREASE_LAYER)
                layers[name] = change[NDVI_DECREASE_LAYER]
            elif path is None:
                logger.info("No %s layer supplied; treating it as no evidence", name.replace("_", " "))
                layers[name] = None
            else:
                layers[name] = read_band(path)[0]

        self._result = OmissionCorrector(self.thresholds).correct(OmissionLayers(labels=labels, **layers))
        corrected = self._result.labels

        pixel_area = self.pixel_area_m2
        if pixel_area is None:
            transform = profile.get("transform")
            pixel_area = abs(transform.a * transform.e) if transform is not None else DEFAULT_PIXEL_AREA_M2
        self._areas = class_areas(corrected, pixel_area)
        for label, area in self._areas.items():
            logger.info("  %-20s %10.3f km²", label.name, area)

        out: dict[str, npt.NDArray] = {"classification": corrected}
        if change:
            out["Defo_Year"] = deforestation_year(corrected, change["NDVI_tBreak"])
            out["Solar_Install_Year"] = installation_year(
                corrected, change["NDVI_tBreak"], change["Albedo_tBreak"]
            )
        write_bands(self.output_path, out, profile, dtype="int16", nodata=0)

    @property
    def result(self) -> OmissionResult | None:
        return self._result

    @property
    def areas(self) -> dict[ClassLabel, float]:
        return dict(self._areas)
