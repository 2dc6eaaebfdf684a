"""
Distance Adjustment

Great-circle distance between two geocoordinate pairs and the banded score
delta applied on top of the weighted criterion score.

Bands (lower bound inclusive, upper bound exclusive):
    [0, 10)  -> +10
    [10, 25) ->   0
    [25, 50) ->  -5
    [50, ∞)  -> -10
"""

import math
from typing import Optional

EARTH_RADIUS_MILES = 3958.8
DISTANCE_UNAVAILABLE_FLAG = "Distance unavailable"

# (exclusive upper bound, delta, label)
DISTANCE_BANDS = (
    (10.0, 10, "Very close"),
    (25.0, 0, "Close"),
    (50.0, -5, "Moderate distance"),
)
FAR_DELTA = -10
FAR_LABEL = "Far distance"


def haversine_miles(
    lat1: Optional[float],
    lon1: Optional[float],
    lat2: Optional[float],
    lon2: Optional[float]
) -> Optional[float]:
    """
    Great-circle distance in miles.

    Returns None when any coordinate is missing.
    """
    if lat1 is None or lon1 is None or lat2 is None or lon2 is None:
        return None

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # Clamp against floating point drift for antipodal/identical points
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_MILES * math.asin(math.sqrt(a))


def adjust(distance_miles: Optional[float]) -> int:
    """Score delta for a distance; unknown distance is neutral."""
    if distance_miles is None or math.isnan(distance_miles):
        return 0
    for upper, delta, _ in DISTANCE_BANDS:
        if distance_miles < upper:
            return delta
    return FAR_DELTA


def describe(distance_miles: Optional[float]) -> str:
    """Display label for the adjustment, e.g. "+10 points (Very close)"."""
    if distance_miles is None or math.isnan(distance_miles):
        return "0 points (Distance unavailable)"
    delta = adjust(distance_miles)
    label = FAR_LABEL
    for upper, _, band_label in DISTANCE_BANDS:
        if distance_miles < upper:
            label = band_label
            break
    return f"{delta:+d} points ({label})" if delta else f"0 points ({label})"
