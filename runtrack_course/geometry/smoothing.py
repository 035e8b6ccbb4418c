"""
Position Smoothing
==================

Scalar Kalman filter applied independently to latitude and longitude.

State is an immutable value returned alongside the filtered position, so
the caller commits it only when the ping is accepted.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class KalmanState:
    """Filter state for one participant."""

    latitude: float
    longitude: float
    p_lat: float = 1.0
    p_lng: float = 1.0

    @property
    def uncertainty(self) -> Tuple[float, float]:
        """Standard deviation estimate per axis."""
        return math.sqrt(self.p_lat), math.sqrt(self.p_lng)


@dataclass(frozen=True)
class KalmanSmoother:
    """
    Constant-position Kalman smoother.

    Args:
        process_noise: q, added to the covariance on each predict step
        measurement_noise: r, GPS measurement variance
    """

    process_noise: float = 0.001
    measurement_noise: float = 0.01

    def __post_init__(self):
        if self.process_noise <= 0:
            raise ValueError(f"process_noise must be > 0, got {self.process_noise}")
        if self.measurement_noise <= 0:
            raise ValueError(f"measurement_noise must be > 0, got {self.measurement_noise}")

    def _step(self, measurement: float, state: float, p: float) -> Tuple[float, float]:
        predicted_p = p + self.process_noise
        gain = predicted_p / (predicted_p + self.measurement_noise)
        return state + gain * (measurement - state), (1.0 - gain) * predicted_p

    def smooth(
        self,
        state: Optional[KalmanState],
        latitude: float,
        longitude: float,
    ) -> Tuple[float, float, KalmanState]:
        """
        Filter one fix.

        Returns:
            (latitude, longitude, new_state). The first fix passes through
            unchanged and seeds the state.
        """
        if state is None:
            seeded = KalmanState(latitude=latitude, longitude=longitude)
            return latitude, longitude, seeded

        lat, p_lat = self._step(latitude, state.latitude, state.p_lat)
        lng, p_lng = self._step(longitude, state.longitude, state.p_lng)
        return lat, lng, KalmanState(latitude=lat, longitude=lng, p_lat=p_lat, p_lng=p_lng)
