"""
Tests — Spatial Fill-in and Year Products
=========================================
Unit tests for :mod:`solar_change_mapper.spatial` and
:mod:`solar_change_mapper.products`.
"""

from __future__ import annotations

import numpy as np
import pytest

from shared.python.exceptions import ConfigurationError, InputValidationError
from solar_change_mapper.products import annual_area, deforestation_year, installation_year
from solar_change_mapper.spatial import component_sizes, spatial_fill


# ---------------------------------------------------------------------------
# Spatial fill-in
# ---------------------------------------------------------------------------


class TestComponentSizes:
    def test_sizes_per_component(self) -> None:
        mask = np.array([
            [1, 1, 0, 0],
            [1, 0, 0, 1],
        ], dtype=bool)
        assert component_sizes(mask).tolist() == [[3, 3, 0, 0], [3, 0, 0, 1]]

    def test_diagonal_neighbours_need_eight_connectivity(self) -> None:
        mask = np.array([[1, 0], [0, 1]], dtype=bool)
        assert component_sizes(mask, connectivity=1).max() == 1
        assert component_sizes(mask, connectivity=2).max() == 2

    def test_invalid_connectivity_raises(self) -> None:
        with pytest.raises(ConfigurationError):
            component_sizes(np.ones((2, 2), dtype=bool), connectivity=3)


class TestSpatialFill:
    def _masks(self) -> tuple[np.ndarray, np.ndarray]:
        confirmed = np.zeros((6, 8), dtype=bool)
        confirmed[0:3, 0:3] = True
        possible = np.zeros((6, 8), dtype=bool)
        possible[0:3, 0:5] = True
        possible[5, 7] = True
        return confirmed, possible

    def test_large_confirmed_patch_fills_touching_possible_pixels(self) -> None:
        confirmed, possible = self._masks()
        result = spatial_fill(confirmed, possible)
        assert result.confirmed_size[0, 0] == 9
        assert result.possible_size[0, 4] == 15
        assert result.remainder_size[0, 4] == 6
        assert result.mask[0:3, 0:5].all()
        assert int(result.mask.sum()) == 15

    def test_isolated_possible_pixel_is_not_filled(self) -> None:
        confirmed, possible = self._masks()
        assert not spatial_fill(confirmed, possible).mask[5, 7]

    def test_small_confirmed_patch_is_dropped(self) -> None:
        confirmed, possible = self._masks()
        result = spatial_fill(confirmed, possible, min_patch_size=9)
        assert not result.mask.any()

    def test_shape_mismatch_raises(self) -> None:
        with pytest.raises(InputValidationError):
            spatial_fill(np.zeros((2, 2)), np.zeros((3, 3)))


# ---------------------------------------------------------------------------
# Year products
# ---------------------------------------------------------------------------


class TestYearProducts:
    LABELS = np.array([[2, 2, 3, 1]])
    NDVI_BREAK = np.array([[2016.7, 2018.2, 2019.5, 2015.0]])
    ALBEDO_BREAK = np.array([[2017.1, 2017.4, 2012.0, 2011.0]])

    def test_deforestation_year_only_on_class_two(self) -> None:
        years = deforestation_year(self.LABELS, self.NDVI_BREAK)
        assert years.tolist() == [[2016, 2018, 0, 0]]

    def test_installation_year_prefers_earlier_albedo_break_on_class_two(self) -> None:
        years = installation_year(self.LABELS, self.NDVI_BREAK, self.ALBEDO_BREAK)
        assert years.tolist() == [[2016, 2017, 2019, 0]]

    def test_missing_break_gives_zero(self) -> None:
        years = deforestation_year(np.array([[2, 2]]), np.array([[np.nan, 0.0]]))
        assert years.tolist() == [[0, 0]]

    def test_annual_area(self) -> None:
        years = np.array([[2016, 2016, 2018, 0]])
        areas = annual_area(years, 2015, 2018, pixel_area_m2=900.0)
        assert list(areas) == [2015, 2016, 2017, 2018]
        assert areas[2016] == pytest.approx(0.0018)
        assert areas[2015] == 0.0
