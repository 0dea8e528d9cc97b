"""
Solar Change Mapper
===================
Land-cover change mapping of solar installations from piecewise-harmonic
segment models: annual composites, change magnitudes, rule-based
confirmation and omission correction.

Public API::

    from solar_change_mapper import ChangeConfig, ChangeExtractionTool, OmissionCorrectionTool
"""

from solar_change_mapper.config import (
    ChangeConfig,
    OmissionThresholds,
    RuleBands,
    RuleThresholds,
    ScreenThresholds,
)
from solar_change_mapper.harmonics import Segment, TimeBase
from solar_change_mapper.model import SegmentModel
from solar_change_mapper.omission import ClassLabel, OmissionCorrector, OmissionLayers
from solar_change_mapper.pipeline import (
    ChangeExtractionTool,
    ChangeProduct,
    OmissionCorrectionTool,
    run_extraction,
)
from solar_change_mapper.rules import RuleClassifier

__all__ = [
    "ChangeConfig",
    "RuleThresholds",
    "RuleBands",
    "OmissionThresholds",
    "ScreenThresholds",
    "Segment",
    "TimeBase",
    "SegmentModel",
    "ClassLabel",
    "OmissionCorrector",
    "OmissionLayers",
    "RuleClassifier",
    "ChangeExtractionTool",
    "OmissionCorrectionTool",
    "ChangeProduct",
    "run_extraction",
]
__version__ = "1.0.0"
