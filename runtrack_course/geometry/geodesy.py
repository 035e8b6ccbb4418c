"""
Geodesy Module
==============

Pure spherical-earth helpers - NO state, NO side effects.

Design:
- Haversine for great-circle distances (WGS84 mean radius)
- Local equirectangular projection for point-to-segment work
  (valid for short segments, which densified routes guarantee)
- Vectorised over numpy arrays so a search window is one call
"""

import math
from typing import Tuple

import numpy as np

EARTH_RADIUS_M = 6371000.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two coordinates.

    Args:
        lat1, lng1: First point (degrees)
        lat2, lng2: Second point (degrees)

    Returns:
        Distance in meters
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_many(lat: float, lng: float, lats: np.ndarray, lngs: np.ndarray) -> np.ndarray:
    """
    Great-circle distance from one point to many points.

    Args:
        lat, lng: Origin (degrees)
        lats, lngs: Arrays of target coordinates (degrees)

    Returns:
        Array of distances in meters, same shape as lats
    """
    phi1 = np.radians(lat)
    phi2 = np.radians(lats)
    d_phi = phi2 - phi1
    d_lambda = np.radians(lngs - lng)

    a = np.sin(d_phi / 2) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def bearing_deg(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Initial bearing from the first point toward the second.

    Returns:
        Bearing in degrees [0, 360), 0 = north, clockwise
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_lambda = math.radians(lng2 - lng1)

    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def bearing_difference(bearing1: float, bearing2: float) -> float:
    """Smallest angle between two bearings, in [0, 180]."""
    diff = abs(bearing1 - bearing2) % 360.0
    return 360.0 - diff if diff > 180.0 else diff


def project_onto_segments(
    lat: float,
    lng: float,
    start_lats: np.ndarray,
    start_lngs: np.ndarray,
    end_lats: np.ndarray,
    end_lngs: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Project a point onto each segment using a local equirectangular frame.

    The frame is centred on the point itself: x grows east scaled by
    cos(latitude), y grows north. For each segment A->B the projection
    parameter t = dot(AP, AB) / |AB|^2 is clamped to [0, 1].

    Args:
        lat, lng: Point to project (degrees)
        start_lats, start_lngs: Segment start vertices (degrees)
        end_lats, end_lngs: Segment end vertices (degrees)

    Returns:
        Tuple of:
        - offsets: perpendicular distance to each segment (meters)
        - fractions: clamped along-segment fraction t for each segment
    """
    meters_per_deg = math.radians(1.0) * EARTH_RADIUS_M
    cos_lat = math.cos(math.radians(lat))

    ax = (start_lngs - lng) * cos_lat * meters_per_deg
    ay = (start_lats - lat) * meters_per_deg
    bx = (end_lngs - lng) * cos_lat * meters_per_deg
    by = (end_lats - lat) * meters_per_deg

    abx = bx - ax
    aby = by - ay
    length_sq = abx * abx + aby * aby

    # P is the origin, so AP = -A
    dot = -ax * abx - ay * aby
    with np.errstate(divide="ignore", invalid="ignore"):
        fractions = np.where(length_sq > 0.0, dot / length_sq, 0.0)
    fractions = np.clip(fractions, 0.0, 1.0)

    px = ax + fractions * abx
    py = ay + fractions * aby
    offsets = np.hypot(px, py)

    return offsets, fractions
