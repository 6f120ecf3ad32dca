"""
Fare estimation  (Strategy Pattern)
===================================

Formula
-------
Fare = max(Minimum_Fare, (Base_Fare + Distance x Rate_Per_KM + Minutes x Rate_Per_Minute) x Surge)

* **Minutes** is derived from distance at an assumed average speed.
* Rides requested without pickup/drop-off are charged the minimum fare.

The estimate is stored on the ride at request time and is the amount
charged when the ride moves to STARTED.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .distance import haversine_km
from .entities import Location


class FareStrategy(ABC):
    @abstractmethod
    def calculate(self, distance_km: float, minutes: float) -> float: ...


class FlatFare(FareStrategy):
    def __init__(self, amount: float):
        self.amount = amount

    def calculate(self, distance_km: float, minutes: float) -> float:
        return self.amount


class MeteredFare(FareStrategy):
    """Base fare plus distance and time components, scaled by surge."""

    def __init__(
        self,
        base_fare: float,
        rate_per_km: float,
        rate_per_minute: float,
        surge_multiplier: float = 1.0,
    ):
        self.base_fare = base_fare
        self.rate_per_km = rate_per_km
        self.rate_per_minute = rate_per_minute
        self.surge_multiplier = surge_multiplier

    def calculate(self, distance_km: float, minutes: float) -> float:
        metered = (
            self.base_fare
            + distance_km * self.rate_per_km
            + minutes * self.rate_per_minute
        )
        return metered * self.surge_multiplier


class FareCalculator:
    """Facade used by the lifecycle manager when a ride is requested."""

    def __init__(
        self,
        base_fare: float = 2.0,
        rate_per_km: float = 1.0,
        rate_per_minute: float = 0.5,
        average_speed_kmh: float = 30.0,
        minimum_fare: float = 5.0,
    ):
        self.base_fare = base_fare
        self.rate_per_km = rate_per_km
        self.rate_per_minute = rate_per_minute
        self.average_speed_kmh = average_speed_kmh
        self.minimum_fare = minimum_fare

    @classmethod
    def from_settings(cls, settings) -> "FareCalculator":
        return cls(
            base_fare=settings.base_fare,
            rate_per_km=settings.rate_per_km,
            rate_per_minute=settings.rate_per_minute,
            average_speed_kmh=settings.average_speed_kmh,
            minimum_fare=settings.minimum_fare,
        )

    def estimate_minutes(self, distance_km: float) -> float:
        return distance_km / self.average_speed_kmh * 60

    def estimate(
        self,
        pickup: Optional[Location],
        dropoff: Optional[Location],
        surge_multiplier: float = 1.0,
    ) -> float:
        if pickup is None or dropoff is None:
            strategy: FareStrategy = FlatFare(self.minimum_fare)
            distance = 0.0
        else:
            strategy = MeteredFare(
                self.base_fare,
                self.rate_per_km,
                self.rate_per_minute,
                surge_multiplier,
            )
            distance = haversine_km(pickup, dropoff)
        fare = strategy.calculate(distance, self.estimate_minutes(distance))
        return round(max(self.minimum_fare, fare), 2)
