"""
Tests — Configuration
=====================
Unit tests for :mod:`solar_change_mapper.config`.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from shared.python.exceptions import ConfigurationError, InputValidationError
from solar_change_mapper.config import ChangeConfig, OmissionThresholds, RuleBands
from solar_change_mapper.harmonics import TimeBase
from solar_change_mapper.rules import Rule


class TestChangeConfigDefaults:
    def test_years_and_correction_are_derived(self) -> None:
        config = ChangeConfig(change_start=2010.4, change_end=2023.9)
        assert (config.start_year, config.end_year) == (2010, 2023)
        assert config.correction == pytest.approx(202 / 365.25)

    def test_tracked_bands_include_spectral_mean(self) -> None:
        assert ChangeConfig().tracked_bands[-1] == "SPM"
        config = ChangeConfig(spectral_mean_bands=(), rule_bands=RuleBands(water="NDVI"))
        assert "SPM" not in config.tracked_bands

    def test_thresholds_follow_the_preset(self) -> None:
        assert ChangeConfig(rule_preset="possible").thresholds.bright_increase == 300

    def test_time_base_accepts_names(self) -> None:
        assert ChangeConfig(time_base="julian_days").time_base is TimeBase.JULIAN_DAYS


class TestChangeConfigValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"change_start": 2020.0, "change_end": 2010.0},
            {"selection_strategy": "random"},
            {"tie_break": "middle"},
            {"anchor": "start"},
            {"composite_mode": "median"},
            {"rule_preset": "strict"},
            {"day_of_year": 400.0},
            {"bands": ("High", "High")},
            {"spectral_mean_bands": ("SWIR",)},
            {"rule_bands": RuleBands(bright="SWIR")},
        ],
    )
    def test_invalid_values_raise(self, kwargs: dict) -> None:
        with pytest.raises(ConfigurationError):
            ChangeConfig(**kwargs)

    def test_unknown_time_base_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            ChangeConfig(time_base="decades")


class TestOverrides:
    def test_moving_the_window_rederives_years(self) -> None:
        config = ChangeConfig().with_overrides(change_start=2012.5)
        assert config.start_year == 2012
        assert config.end_year == 2024

    def test_explicit_years_are_kept(self) -> None:
        config = ChangeConfig().with_overrides(change_start=2012.5, start_year=2008)
        assert config.start_year == 2008

    def test_moving_the_anchor_day_rederives_correction(self) -> None:
        config = ChangeConfig().with_overrides(day_of_year=150.0)
        assert config.correction == pytest.approx(150.0 / 365.25)

    def test_explicit_correction_is_kept(self) -> None:
        config = ChangeConfig().with_overrides(day_of_year=150.0, correction=0.25)
        assert config.correction == 0.25

    def test_overrides_are_validated(self) -> None:
        with pytest.raises(ConfigurationError):
            ChangeConfig().with_overrides(tie_break="random")


class TestSerialisation:
    def test_dict_round_trip(self) -> None:
        config = ChangeConfig(tie_break="last", omission=OmissionThresholds(fuzzy_probability=0.4))
        assert ChangeConfig.from_dict(config.to_dict()) == config

    def test_from_json_with_nested_sections(self, tmp_path: Path) -> None:
        path = tmp_path / "change.json"
        path.write_text(json.dumps({
            "bands": ["High", "Low", "Soil", "NDVI"],
            "spectral_mean_bands": ["High", "Low"],
            "amplitude_bands": ["NDVI"],
            "rule_bands": {"greenness": "NDVI"},
            "omission": {"deforestation_probability": 0.7},
        }))
        config = ChangeConfig.from_json(path)
        assert config.bands == ("High", "Low", "Soil", "NDVI")
        assert config.omission.deforestation_probability == 0.7

    def test_unknown_key_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="colour"):
            ChangeConfig.from_dict({"colour": "red"})

    def test_invalid_json_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(InputValidationError):
            ChangeConfig.from_json(path)

    def test_non_object_json_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigurationError):
            ChangeConfig.from_json(path)


class TestRuleKinds:
    def test_veto_rules(self) -> None:
        assert {r for r in Rule if r.is_veto} == {Rule.GREENING, Rule.REVEGETATION, Rule.WATER}
