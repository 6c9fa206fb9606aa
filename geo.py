import math
from typing import List, Tuple

from schemas import Location, Route

EARTH_RADIUS_KM = 6371.0
AVERAGE_CITY_SPEED_KMH = 50.0
ROUTE_SEGMENTS = 10

CARDINAL_DIRECTIONS = ["N", "NE", "E", "SE", "S", "SW", "W", "NW"]


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Calculate the great circle distance between two points
    on the earth (specified in decimal degrees), in kilometers.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2.0) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def valid_coordinates(lat: float, lng: float) -> bool:
    if lat is None or lng is None:
        return False
    if math.isnan(lat) or math.isnan(lng):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def bearing(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Initial bearing from point 1 to point 2, normalized to [0, 360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlambda = math.radians(lng2 - lng1)

    y = math.sin(dlambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlambda)
    deg = math.degrees(math.atan2(y, x))
    return deg % 360.0


def midpoint(lat1: float, lng1: float, lat2: float, lng2: float) -> Tuple[float, float]:
    phi1 = math.radians(lat1)
    lambda1 = math.radians(lng1)
    phi2 = math.radians(lat2)
    dlambda = math.radians(lng2 - lng1)

    bx = math.cos(phi2) * math.cos(dlambda)
    by = math.cos(phi2) * math.sin(dlambda)

    mid_phi = math.atan2(
        math.sin(phi1) + math.sin(phi2),
        math.sqrt((math.cos(phi1) + bx) ** 2 + by ** 2),
    )
    mid_lambda = lambda1 + math.atan2(by, math.cos(phi1) + bx)
    return math.degrees(mid_phi), math.degrees(mid_lambda)


def cardinal_direction(bearing_deg: float) -> str:
    index = int((bearing_deg + 22.5) / 45) % 8
    return CARDINAL_DIRECTIONS[index]


def format_distance(km: float) -> str:
    if km < 1:
        return f"{km * 1000:.0f} m"
    return f"{km:.2f} km"


def format_duration(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} min"
    hours, mins = divmod(minutes, 60)
    if mins == 0:
        return f"{hours} h"
    return f"{hours} h {mins} min"


def interpolate(from_lat: float, from_lng: float, to_lat: float, to_lng: float,
                segments: int = ROUTE_SEGMENTS) -> List[Location]:
    points = []
    for i in range(segments + 1):
        ratio = i / segments
        points.append(Location(
            lat=from_lat + (to_lat - from_lat) * ratio,
            lng=from_lng + (to_lng - from_lng) * ratio,
        ))
    return points


def estimate_route(from_lat: float, from_lng: float, to_lat: float, to_lng: float,
                   speed_kmh: float = AVERAGE_CITY_SPEED_KMH) -> Route:
    """
    Straight-line route estimate. There is no road graph here: the path is
    a linear interpolation and the duration assumes a constant city speed.
    """
    distance = haversine_km(from_lat, from_lng, to_lat, to_lng)
    duration = int(distance / speed_kmh * 60)
    heading = bearing(from_lat, from_lng, to_lat, to_lng)
    return Route(
        origin=Location(lat=from_lat, lng=from_lng),
        destination=Location(lat=to_lat, lng=to_lng),
        points=interpolate(from_lat, from_lng, to_lat, to_lng),
        distance_km=distance,
        duration_min=duration,
        bearing=heading,
        direction=cardinal_direction(heading),
    )
