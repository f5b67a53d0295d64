"""Distance helpers for proximity lookups (clinics, pharmacies, ambulances)."""
import math
from typing import Any, Iterable, List, Tuple

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def nearest(
    origin: Tuple[float, float],
    candidates: Iterable[Tuple[Any, float, float]],
    radius_km: float | None = None,
    limit: int | None = None,
) -> List[Tuple[Any, float]]:
    """Sort `(item, lat, lon)` candidates by distance from `origin`.

    Returns `(item, distance_km)` pairs, optionally filtered to `radius_km`
    and truncated to `limit`. Candidates with missing coordinates are skipped.
    """
    lat0, lon0 = origin
    results = []
    for item, lat, lon in candidates:
        if lat is None or lon is None:
            continue
        distance = haversine_km(lat0, lon0, float(lat), float(lon))
        if radius_km is not None and distance > radius_km:
            continue
        results.append((item, round(distance, 2)))

    results.sort(key=lambda pair: pair[1])
    if limit is not None:
        results = results[:limit]
    return results
