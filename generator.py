from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from schemas import Congestion, TrafficSample, traffic_key

MIN_SPEED_KMH = 5.0
MAX_SPEED_KMH = 70.0


@dataclass
class Zone:
    name: str
    lat: float
    lng: float


DEFAULT_ZONES: List[Zone] = [
    Zone("Centro - Plaza Central", 14.0818, -87.2068),
    Zone("Zona Norte - Bulevar", 14.0900, -87.2100),
    Zone("Zona Sur", 14.0700, -87.2000),
    Zone("Zona Este", 14.0800, -87.1900),
    Zone("Zona Oeste", 14.0750, -87.2200),
    Zone("Universidad", 14.0950, -87.2150),
    Zone("Hospital", 14.0650, -87.2050),
    Zone("Mall", 14.0850, -87.1950),
]


def is_rush_hour(hour: int) -> bool:
    return 7 <= hour <= 9 or 17 <= hour <= 19


def is_night(hour: int) -> bool:
    return hour >= 22 or hour <= 5


def congestion_level(speed: float) -> Congestion:
    if speed > 40:
        return Congestion.LOW
    if speed > 25:
        return Congestion.MEDIUM
    return Congestion.HIGH


class TrafficGenerator:
    """
    Synthetic speeds for a fixed set of zones.

    Output depends only on (zone index, wall-clock hour, unix seconds), so a
    fixed clock reproduces a tick exactly.
    """
    def __init__(self, zones: Optional[Iterable[Zone]] = None):
        self.zones: List[Zone] = list(zones) if zones is not None else list(DEFAULT_ZONES)
        self.base_speed = 45.0
        self.rush_hour_speed = 25.0
        self.night_speed = 55.0

    def calculate_speed(self, zone_index: int, hour: int, unix_time: int) -> float:
        base = self.base_speed
        if is_rush_hour(hour):
            base = self.rush_hour_speed
        if is_night(hour):
            base = self.night_speed

        # Per-zone perturbation in [-10, 9]
        variation = (zone_index * 7 + int(unix_time)) % 20 - 10
        speed = base + variation
        return max(MIN_SPEED_KMH, min(speed, MAX_SPEED_KMH))

    def build_samples(self, now: datetime) -> Dict[str, TrafficSample]:
        # Rush hour windows follow the local wall clock.
        hour = now.astimezone().hour
        unix_time = int(now.timestamp())

        samples: Dict[str, TrafficSample] = {}
        for i, zone in enumerate(self.zones):
            speed = self.calculate_speed(i, hour, unix_time)
            samples[traffic_key(zone.lat, zone.lng)] = TrafficSample(
                lat=zone.lat,
                lng=zone.lng,
                speed=speed,
                congestion=congestion_level(speed),
                timestamp=now,
            )
        return samples
