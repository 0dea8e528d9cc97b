"""
Raster I/O
==========
GeoTIFF boundary of the tool.

Segment-model stacks are multi-band GeoTIFFs whose band descriptions follow
the segmentation export naming::

    S1_tStart  S1_tEnd  S1_tBreak  S1_numObs  S1_changeProb
    S1_NDVI_coef_INTP ... S1_NDVI_coef_SIN3
    S1_NDVI_rmse  S1_NDVI_magnitude
    S2_tStart ...

The description → band-index map is resolved once when the file is opened.
The time base is read from the ``TIME_BASE`` dataset tag (the caller's
default, fractional years unless configured, when absent).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Sequence

import numpy as np
import numpy.typing as npt
import rasterio
from rasterio import profiles

from shared.python.exceptions import (
    InputValidationError,
    OutputWriteError,
    RasterError,
)
from shared.python.validators import Validators

from solar_change_mapper.harmonics import COEF_NAMES, N_COEFS, TimeBase
from solar_change_mapper.model import SegmentModel

logger = logging.getLogger("solar_change.io")

TIMING_FIELDS: dict[str, str] = {
    "tStart": "start_time",
    "tEnd": "end_time",
    "tBreak": "break_time",
    "numObs": "num_obs",
    "changeProb": "change_prob",
}
TIME_BASE_TAG = "TIME_BASE"
NODATA = -9999.0


# ---------------------------------------------------------------------------
# Band-description parsing
# ---------------------------------------------------------------------------


def _parse_description(description: str) -> tuple[int, str, str | None, str | None] | None:
    """Split ``S<k>_<rest>`` into ``(k, kind, band, coef)``.

    ``kind`` is a timing field, ``"coef"``, ``"rmse"`` or ``"magnitude"``.
    Returns ``None`` for descriptions outside the naming scheme.
    """
    prefix, _, rest = description.partition("_")
    if not prefix.startswith("S") or not prefix[1:].isdigit() or not rest:
        return None
    segment = int(prefix[1:])
    if rest in TIMING_FIELDS:
        return segment, rest, None, None
    band, _, tail = rest.partition("_")
    if tail in ("rmse", "magnitude"):
        return segment, tail, band, None
    kind, _, coef = tail.partition("_")
    if kind == "coef" and coef in COEF_NAMES:
        return segment, "coef", band, coef
    return None


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


def read_segment_model(
    path: Path,
    bands: Sequence[str] | None = None,
    default_time_base: TimeBase | str = TimeBase.FRACTIONAL_YEARS,
) -> tuple[SegmentModel, profiles.Profile]:
    """Load a segment-model stack.

    Args:
        path: Multi-band GeoTIFF with segment band descriptions.
        bands: Restrict coefficients to these bands (all when ``None``).
        default_time_base: Time base used when the file has no
                           ``TIME_BASE`` tag.

    Returns:
        ``(model, profile)`` — the profile is reused for the outputs.

    Raises:
        RasterError: If rasterio cannot read the file.
        InputValidationError: If the file carries no segment bands.
        BandNotFoundError: If a requested band is absent.
    """
    try:
        with rasterio.open(path) as src:
            profile = src.profile.copy()
            tags = src.tags()
            index: dict[tuple[int, str, str | None, str | None], int] = {}
            for i, description in enumerate(src.descriptions, start=1):
                parsed = _parse_description(description or "")
                if parsed is not None:
                    index[parsed] = i
            if not index:
                raise InputValidationError(
                    f"'{Path(path).name}' has no segment band descriptions (expected 'S1_tStart', ...)."
                )
            data = src.read(sorted(index.values()), out_dtype="float64", masked=True)
            nodata_filled = np.ma.filled(data, np.nan)
    except rasterio.errors.RasterioIOError as exc:
        raise RasterError(f"Cannot read segment stack '{path}': {exc}") from exc

    layer = {i: nodata_filled[k] for k, i in enumerate(sorted(index.values()))}
    n_seg = max(key[0] for key in index)
    rows, cols = nodata_filled.shape[1:]
    available = sorted({key[2] for key in index if key[2] is not None})
    selected = list(bands) if bands is not None else available
    Validators.assert_bands_present(selected, available)

    def stack(kind: str, band: str | None = None, coef: str | None = None) -> npt.NDArray[np.float64]:
        out = np.full((n_seg, rows, cols), np.nan)
        for s in range(1, n_seg + 1):
            i = index.get((s, kind, band, coef))
            if i is not None:
                out[s - 1] = layer[i]
        return out

    timing = {attr: stack(key) for key, attr in TIMING_FIELDS.items()}
    coefs = {
        band: np.stack([stack("coef", band, coef) for coef in COEF_NAMES], axis=1)
        for band in selected
    }
    rmse = {b: stack("rmse", b) for b in selected if any(k[1] == "rmse" and k[2] == b for k in index)}
    magnitude = {
        b: stack("magnitude", b) for b in selected if any(k[1] == "magnitude" and k[2] == b for k in index)
    }
    time_base = TimeBase.parse(tags.get(TIME_BASE_TAG, default_time_base))
    logger.info(
        "Read %d segment(s) × %d band(s) from %s (%dx%d, %s)",
        n_seg, len(selected), Path(path).name, rows, cols, time_base.name.lower(),
    )
    model = SegmentModel(
        start_time=timing["start_time"],
        end_time=timing["end_time"],
        break_time=timing["break_time"],
        coefs=coefs,
        rmse=rmse,
        magnitude=magnitude,
        num_obs=timing["num_obs"],
        change_prob=timing["change_prob"],
        time_base=time_base,
    )
    return model, profile


def read_band(
    path: Path,
    band_index: int = 1,
) -> tuple[npt.NDArray[np.float64], profiles.Profile]:
    """Read one band as float64 with nodata converted to NaN.

    Raises:
        RasterError: If rasterio cannot read the file.
        BandIndexError: If *band_index* is out of range.
    """
    try:
        with rasterio.open(path) as src:
            Validators.assert_band_index_valid(band_index, src.count)
            array = src.read(band_index, out_dtype="float64", masked=True)
            profile = src.profile.copy()
    except rasterio.errors.RasterioIOError as exc:
        raise RasterError(f"Cannot read raster '{path}': {exc}") from exc
    return np.ma.filled(array, np.nan), profile


def read_named_bands(
    path: Path,
    names: Sequence[str],
) -> dict[str, npt.NDArray[np.float64]]:
    """Read bands by their description (e.g. ``NDVI_tBreak``).

    Raises:
        RasterError: If rasterio cannot read the file.
        BandNotFoundError: If a description is absent.
    """
    try:
        with rasterio.open(path) as src:
            lookup = {d: i for i, d in enumerate(src.descriptions, start=1) if d}
            Validators.assert_bands_present(names, list(lookup))
            return {
                name: np.ma.filled(src.read(lookup[name], out_dtype="float64", masked=True), np.nan)
                for name in names
            }
    except rasterio.errors.RasterioIOError as exc:
        raise RasterError(f"Cannot read raster '{path}': {exc}") from exc


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def write_bands(
    output_path: Path,
    layers: Mapping[str, npt.ArrayLike],
    reference_profile: profiles.Profile,
    dtype: str = "float32",
    nodata: float | None = NODATA,
    tags: Mapping[str, str] | None = None,
) -> None:
    """Write named 2-D layers as one multi-band GeoTIFF.

    NaN values are written as *nodata*; band descriptions carry the names.

    Raises:
        OutputWriteError: If the file cannot be written.
    """
    if not layers:
        raise OutputWriteError(str(output_path), "nothing to write")
    names = list(layers)
    arrays = [np.asarray(layers[name], dtype=np.float64) for name in names]
    fill = nodata if nodata is not None else 0
    data = np.stack([np.where(np.isnan(a), fill, a) for a in arrays]).astype(dtype)

    profile = reference_profile.copy()
    profile.update(
        driver="GTiff",
        dtype=dtype,
        count=len(names),
        nodata=nodata,
        compress="lzw",
    )
    Validators.assert_output_dir_writable(output_path)
    try:
        with rasterio.open(output_path, "w", **profile) as dst:
            dst.write(data)
            for i, name in enumerate(names, start=1):
                dst.set_band_description(i, name)
            if tags:
                dst.update_tags(**tags)
    except (OSError, rasterio.errors.RasterioIOError) as exc:
        raise OutputWriteError(str(output_path), str(exc)) from exc
    logger.debug("Wrote %d band(s) to %s", len(names), output_path)


def write_segment_model(
    output_path: Path,
    model: SegmentModel,
    reference_profile: profiles.Profile,
) -> None:
    """Write *model* in the segment-stack layout read by :func:`read_segment_model`."""
    layers: dict[str, npt.NDArray[np.float64]] = {}
    for s in range(model.n_segments):
        prefix = f"S{s + 1}"
        timing = {
            "tStart": model.start_time[s],
            "tEnd": model.end_time[s],
            "tBreak": model.break_time[s],
            "numObs": model.num_obs[s] if model.num_obs is not None else np.zeros(model.shape),
            "changeProb": model.change_prob[s] if model.change_prob is not None else np.zeros(model.shape),
        }
        for key, value in timing.items():
            layers[f"{prefix}_{key}"] = value
        for band in model.bands:
            for k in range(N_COEFS):
                layers[f"{prefix}_{band}_coef_{COEF_NAMES[k]}"] = model.coefs[band][s, k]
            if band in model.rmse:
                layers[f"{prefix}_{band}_rmse"] = model.rmse[band][s]
            if band in model.magnitude:
                layers[f"{prefix}_{band}_magnitude"] = model.magnitude[band][s]
    write_bands(
        output_path,
        layers,
        reference_profile,
        dtype="float64",
        tags={TIME_BASE_TAG: model.time_base.name.lower()},
    )
