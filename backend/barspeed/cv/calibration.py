"""
Pixel-to-metric calibration from a marked barbell sleeve cap.

The user draws a circle over the sleeve cap. A standard cap is 50 mm across,
so the drawn diameter in pixels over 0.05 m gives the scale factor.
"""

import math
from dataclasses import dataclass
from typing import Tuple

# Standard Olympic sleeve cap diameter
SLEEVE_DIAMETER_METERS = 0.05


@dataclass(frozen=True)
class Calibration:
    """Fixed scale for one analysis session."""
    pixels_per_meter: float
    origin_center: Tuple[float, float]
    origin_radius: float

    def __post_init__(self):
        if not self.pixels_per_meter > 0 or not math.isfinite(self.pixels_per_meter):
            raise ValueError(f"pixels_per_meter must be > 0, got {self.pixels_per_meter}")
        if not self.origin_radius > 0:
            raise ValueError(f"origin_radius must be > 0, got {self.origin_radius}")

    @property
    def target_radius_pixels(self) -> float:
        return self.origin_radius

    def scaled(self, factor: float) -> "Calibration":
        """
        Calibration for frames resized by `factor`.

        Pixel distances and the scale factor shrink together, so metric
        results are unchanged.
        """
        if factor <= 0:
            raise ValueError(f"Scale factor must be > 0, got {factor}")
        cx, cy = self.origin_center
        return Calibration(
            pixels_per_meter=self.pixels_per_meter * factor,
            origin_center=(cx * factor, cy * factor),
            origin_radius=self.origin_radius * factor,
        )


def pixels_per_meter_from_radius(
    radius_pixels: float,
    reference_diameter_m: float = SLEEVE_DIAMETER_METERS
) -> float:
    """Scale factor from the radius of the circle drawn over the reference."""
    if radius_pixels <= 0:
        raise ValueError(f"Reference radius must be > 0, got {radius_pixels}")
    if reference_diameter_m <= 0:
        raise ValueError(f"Reference diameter must be > 0, got {reference_diameter_m}")
    return (radius_pixels * 2.0) / reference_diameter_m


def resolve_calibration(
    center: Tuple[float, float],
    radius_pixels: float,
    reference_diameter_m: float = SLEEVE_DIAMETER_METERS
) -> Calibration:
    """Build a Calibration from the user-drawn reference circle."""
    return Calibration(
        pixels_per_meter=pixels_per_meter_from_radius(radius_pixels, reference_diameter_m),
        origin_center=(float(center[0]), float(center[1])),
        origin_radius=float(radius_pixels),
    )
