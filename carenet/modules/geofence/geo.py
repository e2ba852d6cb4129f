import math

EARTH_RADIUS_KM = 6371.0

def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two coordinates."""
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dlon / 2) ** 2
    # rounding can push a a hair past 1 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * 1000 * c

def within_circle(lat: float, lon: float, center_lat: float, center_lon: float, radius_m: float) -> tuple[bool, float]:
    """Returns (inside, distance_m); the boundary itself counts as inside."""
    distance = haversine_m(lat, lon, center_lat, center_lon)
    return distance <= radius_m, distance
