"""
Solar Change Mapper — Shared Python Package
============================================
Re-exports the shared base class, exception hierarchy, and validator
utilities so tool modules can import from a single location::

    from shared.python import GeoTool, Validators
    from shared.python.exceptions import ConfigurationError
"""

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    BandIndexError,
    BandNotFoundError,
    ConfigurationError,
    InputValidationError,
    OutputWriteError,
    RasterError,
    SolarChangeError,
)
from shared.python.validators import Validators

__all__ = [
    "GeoTool",
    "Validators",
    "SolarChangeError",
    "InputValidationError",
    "BandNotFoundError",
    "ConfigurationError",
    "RasterError",
    "BandIndexError",
    "OutputWriteError",
]
