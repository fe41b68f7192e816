"""Geographic selection of exit nodes."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

EARTH_RADIUS_KM = 6371.0


@dataclass
class GeoLocation:
    """Location of a client; 0.0/0.0 means the location is unknown."""

    country_code: str | None = None
    city: str | None = None
    latitude: float = 0.0
    longitude: float = 0.0

    @property
    def is_known(self) -> bool:
        return not (self.latitude == 0.0 and self.longitude == 0.0)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)

    a = math.sin(d_lat / 2.0) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(d_lon / 2.0) ** 2
    c = 2.0 * math.asin(math.sqrt(a))
    return EARTH_RADIUS_KM * c


def _divide(numerator: float, denominator: float) -> float:
    if denominator != 0.0:
        return numerator / denominator
    if numerator == 0.0 or math.isnan(numerator):
        return math.nan
    return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)


@dataclass
class GeoExitNode:
    """An exit node with a weight and a position."""

    name: str
    endpoint: str
    weight: float
    latitude: float
    longitude: float

    def score(self, client_geo: GeoLocation) -> float:
        """Distance to the client divided by weight; lower is better."""
        distance = haversine_distance(
            client_geo.latitude, client_geo.longitude, self.latitude, self.longitude
        )
        return _divide(distance, self.weight)


def select_best_exit(
    nodes: Sequence[GeoExitNode], client_geo: GeoLocation
) -> GeoExitNode | None:
    """Pick the closest weighted exit node, or the heaviest one if the client is unplaced."""
    if not nodes:
        return None

    if not client_geo.is_known:
        best = nodes[0]
        for node in nodes[1:]:
            # Ties go to the later node.
            if not node.weight < best.weight:
                best = node
        return best

    return min(nodes, key=lambda node: node.score(client_geo))