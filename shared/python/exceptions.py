"""
Solar Change Mapper — Custom Exception Hierarchy
=================================================
Every module raises exceptions from this module so callers can catch them
at the right level of granularity.

Hierarchy::

    SolarChangeError                     ← catch-all base
    ├── InputValidationError             ← bad files, mismatched rasters, etc.
    │   └── BandNotFoundError            ← named band missing from a stack
    ├── ConfigurationError               ← malformed thresholds / band lists
    ├── RasterError                      ← rasterio / numpy raster issues
    │   └── BandIndexError               ← requested band does not exist
    └── OutputWriteError                 ← cannot write to output path

Sparse data is never an error: extrapolated queries, pixels without a
qualifying change and absent omission evidence all resolve to defaults.
Only caller mistakes surface as exceptions.

Usage::

    from shared.python.exceptions import ConfigurationError

    raise ConfigurationError("start_year must not exceed end_year")
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class SolarChangeError(Exception):
    """Base exception for the solar change toolkit.

    Args:
        message: Human-readable description of the error.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(SolarChangeError):
    """Raised when a tool's inputs fail pre-processing validation."""


class BandNotFoundError(InputValidationError):
    """Raised when a named band is absent from a raster stack or composite.

    Args:
        band: The name of the missing band.
        available: Band names that ARE present, used to build the message.

    Example::

        raise BandNotFoundError("NDVI", ["High", "Low", "Soil"])
    """

    def __init__(self, band: str, available: list[str]) -> None:
        available_str = ", ".join(f"'{b}'" for b in available)
        super().__init__(
            f"Band '{band}' not found. Available bands: {available_str}"
        )
        self.band: str = band
        self.available: list[str] = available


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(SolarChangeError):
    """Raised at setup time when configuration is inconsistent.

    Examples: non-finite thresholds, a rule referring to a band that is not
    tracked, an empty band list or an inverted year range.
    """


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class RasterError(SolarChangeError):
    """Raised for general raster processing failures (rasterio / numpy)."""


class BandIndexError(RasterError):
    """Raised when a requested raster band index does not exist.

    Args:
        band_index: The 1-based band number that was requested.
        total_bands: Total number of bands in the raster file.
    """

    def __init__(self, band_index: int, total_bands: int) -> None:
        super().__init__(
            f"Band {band_index} does not exist. "
            f"This raster has {total_bands} band(s) (1-indexed)."
        )
        self.band_index: int = band_index
        self.total_bands: int = total_bands


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(SolarChangeError):
    """Raised when a tool cannot write its output to disk.

    Args:
        output_path: String representation of the path that failed.
        reason: Underlying OS or library error message.
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(
            f"Failed to write output to '{output_path}': {reason}"
        )
        self.output_path: str = output_path
        self.reason: str = reason
