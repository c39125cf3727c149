"""Calculs géographiques : distance haversine, rayon, boîte englobante."""
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from discovery.config import settings


@dataclass(frozen=True)
class GeoPoint:
    """Représente un point géographique."""
    lat: float
    lng: float

    @classmethod
    def from_location(cls, location) -> Optional['GeoPoint']:
        """Builds a point from anything with latitude/longitude, None if missing."""
        lat = getattr(location, "latitude", None)
        lng = getattr(location, "longitude", None)
        if lat is None or lng is None:
            return None
        try:
            return cls(lat=float(lat), lng=float(lng))
        except (TypeError, ValueError):
            return None


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in meters (haversine, mean Earth radius).

    Coordinates must already be validated by the caller.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return settings.EARTH_RADIUS_METERS * c


def within_radius(distance: float, radius_meters: float) -> bool:
    """True when distance <= radius (inclusive)."""
    return distance <= radius_meters


def bounding_box(
    lat: float, lon: float, radius_meters: float
) -> Tuple[float, float, float, float]:
    """
    Boîte englobante (min_lat, max_lat, min_lon, max_lon) d'un cercle.

    Sert de pré-filtre SQL ; le filtre exact reste `within_radius`.
    Near the poles the longitude span is widened to the full range.
    """
    d_lat = math.degrees(radius_meters / settings.EARTH_RADIUS_METERS)
    min_lat = max(-90.0, lat - d_lat)
    max_lat = min(90.0, lat + d_lat)

    cos_lat = math.cos(math.radians(lat))
    if cos_lat < 1e-6 or max_lat >= 90.0 or min_lat <= -90.0:
        return min_lat, max_lat, -180.0, 180.0

    d_lon = math.degrees(radius_meters / (settings.EARTH_RADIUS_METERS * cos_lat))
    if d_lon >= 180.0:
        return min_lat, max_lat, -180.0, 180.0
    return min_lat, max_lat, lon - d_lon, lon + d_lon


def nearest(
    origin: GeoPoint, locations: Iterable
) -> Optional[Tuple[float, object]]:
    """(distance, location) of the closest location to origin, None if none has coordinates."""
    best = None
    for location in locations:
        point = GeoPoint.from_location(location)
        if point is None:
            continue
        dist = distance_meters(origin.lat, origin.lng, point.lat, point.lng)
        if best is None or dist < best[0]:
            best = (dist, location)
    return best


def closest_pair_distance(locations_a: Iterable, locations_b: Iterable) -> Optional[float]:
    """Smallest distance between any location of A and any of B, None if either side has no coordinates."""
    points_a = [p for p in map(GeoPoint.from_location, locations_a) if p]
    points_b = [p for p in map(GeoPoint.from_location, locations_b) if p]
    best: Optional[float] = None
    for a in points_a:
        for b in points_b:
            dist = distance_meters(a.lat, a.lng, b.lat, b.lng)
            if best is None or dist < best:
                best = dist
    return best


def location_bucket(lat: float, lon: float, decimals: Optional[int] = None) -> str:
    """Rounds a coordinate pair to a grid cell id (3 decimals is about 110 m)."""
    decimals = settings.LOCATION_BUCKET_DECIMALS if decimals is None else decimals
    return f"{round(lat, decimals):.{decimals}f}_{round(lon, decimals):.{decimals}f}"
