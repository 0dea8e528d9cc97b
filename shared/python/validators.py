"""
Solar Change Mapper — Shared Input Validators
==============================================
Static precondition checks used by the tool classes and configuration
structs before any pixel is processed.

All methods raise an exception from :mod:`shared.python.exceptions` rather
than returning booleans, which keeps ``validate_inputs`` and
``__post_init__`` implementations short::

    class MyTool(GeoTool):
        def validate_inputs(self) -> None:
            Validators.assert_file_exists(self.input_path)
            Validators.assert_supported_extension(self.input_path, [".tif"])
            Validators.assert_bands_present(["NDVI"], stack_bands)
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Iterable, Sequence

from shared.python.exceptions import (
    BandIndexError,
    BandNotFoundError,
    ConfigurationError,
    InputValidationError,
    OutputWriteError,
)


class Validators:
    """Collection of static precondition checks.

    All methods are ``@staticmethod`` — this class is never instantiated.
    """

    # ------------------------------------------------------------------
    # File-system checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Assert that *path* points to an existing regular file.

        Raises:
            InputValidationError: If *path* does not exist or is a directory.
        """
        path = Path(path)
        if not path.exists():
            raise InputValidationError(
                f"Input file not found: '{path}'. "
                "Check that the path is correct and the file exists."
            )
        if path.is_dir():
            raise InputValidationError(
                f"Expected a file but got a directory: '{path}'."
            )

    @staticmethod
    def assert_output_dir_writable(output_path: Path) -> None:
        """Create the parent directory of *output_path* if needed.

        Raises:
            OutputWriteError: If the parent directory cannot be created.
        """
        parent = Path(output_path).parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(output_path), str(exc)) from exc

    @staticmethod
    def assert_supported_extension(path: Path, extensions: Sequence[str]) -> None:
        """Assert that *path* has one of the allowed file extensions.

        Args:
            path: File path to check.
            extensions: Allowed extensions, each starting with a dot.

        Raises:
            InputValidationError: If the extension is not in *extensions*.
        """
        path = Path(path)
        suffix = path.suffix.lower()
        allowed = [ext.lower() for ext in extensions]
        if suffix not in allowed:
            raise InputValidationError(
                f"Unsupported file extension '{suffix}' for '{path.name}'. "
                f"Accepted extensions: {', '.join(allowed)}"
            )

    # ------------------------------------------------------------------
    # Band checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_bands_present(
        required: Iterable[str],
        available: Sequence[str],
    ) -> None:
        """Assert that every band in *required* appears in *available*.

        Raises:
            BandNotFoundError: On the first missing band.
        """
        available = list(available)
        for band in required:
            if band not in available:
                raise BandNotFoundError(band, available)

    @staticmethod
    def assert_band_list_valid(bands: Sequence[str], label: str = "bands") -> None:
        """Assert that *bands* is a non-empty list of unique names.

        Raises:
            ConfigurationError: If the list is empty, has blanks or duplicates.
        """
        if not bands:
            raise ConfigurationError(f"'{label}' must contain at least one band.")
        if any(not str(b).strip() for b in bands):
            raise ConfigurationError(f"'{label}' contains an empty band name.")
        duplicates = sorted({b for b in bands if list(bands).count(b) > 1})
        if duplicates:
            raise ConfigurationError(
                f"'{label}' lists band(s) more than once: {', '.join(duplicates)}"
            )

    @staticmethod
    def assert_band_index_valid(band_index: int, total_bands: int) -> None:
        """Assert that a 1-based *band_index* exists in the raster.

        Raises:
            BandIndexError: If *band_index* is out of range.
        """
        if band_index < 1 or band_index > total_bands:
            raise BandIndexError(band_index, total_bands)

    # ------------------------------------------------------------------
    # Numeric / configuration checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_finite(value: float, name: str) -> None:
        """Assert that a configuration number is finite.

        Raises:
            ConfigurationError: If *value* is NaN, infinite or not numeric.
        """
        try:
            ok = math.isfinite(float(value))
        except (TypeError, ValueError):
            ok = False
        if not ok:
            raise ConfigurationError(f"'{name}' must be a finite number, got {value!r}.")

    @staticmethod
    def assert_probability(value: float, name: str) -> None:
        """Assert that a threshold lies in the closed interval [0, 1].

        Raises:
            ConfigurationError: If *value* is outside [0, 1].
        """
        Validators.assert_finite(value, name)
        if not 0.0 <= float(value) <= 1.0:
            raise ConfigurationError(f"'{name}' must lie in [0, 1], got {value!r}.")

    @staticmethod
    def assert_year_range(start_year: int, end_year: int) -> None:
        """Assert that ``start_year <= end_year``.

        Raises:
            ConfigurationError: If the range is inverted.
        """
        if int(start_year) > int(end_year):
            raise ConfigurationError(
                f"Year range is inverted: start_year={start_year} > end_year={end_year}."
            )

    @staticmethod
    def assert_choice(value: str, choices: Sequence[str], name: str) -> None:
        """Assert that *value* is one of *choices*.

        Raises:
            ConfigurationError: If *value* is not a recognised option.
        """
        if value not in choices:
            raise ConfigurationError(
                f"Unknown {name} {value!r}. Valid options: {', '.join(choices)}"
            )

    # ------------------------------------------------------------------
    # Raster checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_raster_shapes_match(
        shape_a: tuple[int, ...],
        shape_b: tuple[int, ...],
        label_a: str = "Raster A",
        label_b: str = "Raster B",
    ) -> None:
        """Assert that two rasters share the same (rows, cols) shape.

        Raises:
            InputValidationError: If the shapes do not match.

        Example::

            Validators.assert_raster_shapes_match(
                labels.shape, fuzzy.shape, "classification", "fuzzy probability"
            )
        """
        if tuple(shape_a) != tuple(shape_b):
            raise InputValidationError(
                f"Raster shape mismatch: {label_a} is {tuple(shape_a)} but "
                f"{label_b} is {tuple(shape_b)}. "
                "All input rasters must have identical dimensions."
            )
