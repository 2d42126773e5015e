"""Tests for sleeve cap calibration."""

import pytest

from barspeed.cv.calibration import (
    Calibration, SLEEVE_DIAMETER_METERS, pixels_per_meter_from_radius, resolve_calibration
)


def test_pixels_per_meter_from_sleeve_radius():
    # 50 mm cap drawn with a 25 px radius -> 50 px across 0.05 m
    assert pixels_per_meter_from_radius(25.0) == pytest.approx(1000.0)
    assert SLEEVE_DIAMETER_METERS == 0.05


def test_custom_reference_diameter():
    assert pixels_per_meter_from_radius(50.0, reference_diameter_m=0.1) == pytest.approx(1000.0)


@pytest.mark.parametrize("radius", [0.0, -3.0])
def test_non_positive_radius_rejected(radius):
    with pytest.raises(ValueError):
        pixels_per_meter_from_radius(radius)


def test_resolve_calibration():
    calibration = resolve_calibration((320, 240), 20.0)
    assert calibration.pixels_per_meter == pytest.approx(800.0)
    assert calibration.origin_center == (320.0, 240.0)
    assert calibration.target_radius_pixels == 20.0


def test_invalid_calibration_rejected():
    with pytest.raises(ValueError):
        Calibration(pixels_per_meter=0.0, origin_center=(0, 0), origin_radius=5.0)
    with pytest.raises(ValueError):
        Calibration(pixels_per_meter=float("inf"), origin_center=(0, 0), origin_radius=5.0)
    with pytest.raises(ValueError):
        Calibration(pixels_per_meter=100.0, origin_center=(0, 0), origin_radius=0.0)


def test_scaled_keeps_metric_ratio():
    calibration = resolve_calibration((400, 300), 20.0)
    half = calibration.scaled(0.5)

    assert half.origin_center == (200.0, 150.0)
    assert half.origin_radius == 10.0
    # Same physical size per radius
    assert half.origin_radius * 2 / half.pixels_per_meter == pytest.approx(SLEEVE_DIAMETER_METERS)

    with pytest.raises(ValueError):
        calibration.scaled(0)
