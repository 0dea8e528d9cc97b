"""
Solar Change Mapper — CLI Entry Point
=====================================
Installed as the ``geo-solar-change`` command via ``pyproject.toml``.

Usage:
    geo-solar-change extract --input ccdc_segments.tif --output chg.tif
    geo-solar-change extract -i ccdc_segments.tif -o chg.tif --config change.json --strategy max
    geo-solar-change correct-omissions -i classes.tif -o classes_fixed.tif \\
        --buffer buffer.tif --fuzzy fuzzy.tif --no-break nob.tif
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from shared.python.exceptions import SolarChangeError

from solar_change_mapper.config import (
    SELECTION_STRATEGIES,
    TIE_BREAKS,
    ChangeConfig,
    OmissionThresholds,
)
from solar_change_mapper.pipeline import ChangeExtractionTool, OmissionCorrectionTool

_existing_file = click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path)
_output_file = click.Path(file_okay=True, dir_okay=False, path_type=Path)


@click.group(
    name="geo-solar-change",
    help="Map solar-installation land-cover change from harmonic segment models.",
)
def cli() -> None:
    """Solar change mapping commands."""


@cli.command(
    name="extract",
    help="Extract confirmed and possible changes from a segment-model GeoTIFF.",
)
@click.option("--input", "-i", "input_path", required=True, type=_existing_file,
              help="Segment-model stack (S1_tStart, S1_NDVI_coef_INTP, ...).")
@click.option("--output", "-o", "output_path", required=True, type=_output_file,
              help="Path for the change product GeoTIFF.")
@click.option("--config", "config_path", type=_existing_file, default=None,
              help="JSON file with ChangeConfig fields.")
@click.option("--start", "change_start", type=float, default=None,
              help="Start of the change window (fractional year).")
@click.option("--end", "change_end", type=float, default=None,
              help="End of the change window (fractional year).")
@click.option("--strategy", type=click.Choice(SELECTION_STRATEGIES), default=None,
              help="Dominant-change selection strategy.")
@click.option("--tie-break", type=click.Choice(TIE_BREAKS), default=None,
              help="Which candidate wins an exact tie.")
@click.option("--min-patch-size", type=int, default=8, show_default=True,
              help="Confirmed patches must be larger than this to be kept.")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def extract(
    input_path: Path,
    output_path: Path,
    config_path: Path | None,
    change_start: float | None,
    change_end: float | None,
    strategy: str | None,
    tie_break: str | None,
    min_patch_size: int,
    verbose: bool,
) -> None:
    """Wire Click options into ChangeExtractionTool."""
    overrides = {
        key: value
        for key, value in {
            "change_start": change_start,
            "change_end": change_end,
            "selection_strategy": strategy,
            "tie_break": tie_break,
        }.items()
        if value is not None
    }
    try:
        config = ChangeConfig.from_json(config_path) if config_path else ChangeConfig()
        if overrides:
            config = config.with_overrides(**overrides)

        tool = ChangeExtractionTool(input_path, output_path, config, min_patch_size, verbose=verbose)
        tool.run()
        click.echo(f"\nChange product written to: {output_path}")
        if tool.product is not None:
            spatial = tool.product.spatial
            click.echo(f"  Confirmed pixels kept : {int((spatial.confirmed_size > min_patch_size).sum())}")
            click.echo(f"  Filled pixels         : {int(spatial.mask.sum())}")
    except SolarChangeError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)


@cli.command(
    name="correct-omissions",
    help="Relabel likely missed detections in a solar classification map.",
)
@click.option("--input", "-i", "input_path", required=True, type=_existing_file,
              help="Class map GeoTIFF (values 1..6).")
@click.option("--output", "-o", "output_path", required=True, type=_output_file,
              help="Path for the corrected class map.")
@click.option("--buffer", "buffer_path", type=_existing_file, default=None, help="First buffer tier.")
@click.option("--ndvi-decrease", "ndvi_decrease_path", type=_existing_file, default=None,
              help="NDVI-decrease mask (mask_NDVI of --changes when omitted).")
@click.option("--second-buffer", "second_buffer_path", type=_existing_file, default=None,
              help="Second buffer tier.")
@click.option("--fuzzy", "fuzzy_path", type=_existing_file, default=None,
              help="Fuzzy change probability.")
@click.option("--no-break", "no_break_path", type=_existing_file, default=None,
              help="No-break probability.")
@click.option("--deforestation", "deforestation_path", type=_existing_file, default=None,
              help="Deforestation probability (defaults to the fuzzy probability).")
@click.option("--changes", "change_path", type=_existing_file, default=None,
              help="Change product with NDVI_tBreak, Albedo_tBreak and mask_NDVI bands.")
@click.option("--defo-threshold", type=float, default=0.66, show_default=True)
@click.option("--fuzzy-threshold", type=float, default=0.5, show_default=True)
@click.option("--no-break-threshold", type=float, default=0.5, show_default=True)
@click.option("--pixel-area", type=float, default=None,
              help="Pixel area in m² (from the raster transform when omitted).")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def correct_omissions(
    input_path: Path,
    output_path: Path,
    buffer_path: Path | None,
    ndvi_decrease_path: Path | None,
    second_buffer_path: Path | None,
    fuzzy_path: Path | None,
    no_break_path: Path | None,
    deforestation_path: Path | None,
    change_path: Path | None,
    defo_threshold: float,
    fuzzy_threshold: float,
    no_break_threshold: float,
    pixel_area: float | None,
    verbose: bool,
) -> None:
    """Wire Click options into OmissionCorrectionTool."""
    try:
        thresholds = OmissionThresholds(
            deforestation_probability=defo_threshold,
            fuzzy_probability=fuzzy_threshold,
            no_break_probability=no_break_threshold,
        )
        tool = OmissionCorrectionTool(
            input_path,
            output_path,
            buffer_path=buffer_path,
            ndvi_decrease_path=ndvi_decrease_path,
            second_buffer_path=second_buffer_path,
            fuzzy_path=fuzzy_path,
            no_break_path=no_break_path,
            deforestation_path=deforestation_path,
            change_path=change_path,
            thresholds=thresholds,
            pixel_area_m2=pixel_area,
            verbose=verbose,
        )
        tool.run()
        click.echo(f"\nCorrected class map written to: {output_path}")
        for label, area in tool.areas.items():
            click.echo(f"  {label.value} {label.name:<20} {area:10.3f} km²")
    except SolarChangeError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
