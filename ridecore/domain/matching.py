"""
Candidate Driver Selection
==========================

1. **Spatial filter** -- drivers are indexed by the H3 cell of their last
   reported position.  The search area is the k-ring (``grid_disk``) around
   the pickup cell, so the repository query is a plain ``IN`` on an indexed
   string column.
2. **Eligibility** -- available, same service type, never rejected this
   ride, not the driver currently holding the offer.
3. **Ranking** -- great-circle (Haversine) distance to the pickup, nearest
   first; ties broken by driver id so the order is deterministic.

Assumption
----------
Driver positions are best-effort periodic writes and may be stale by a
few seconds.  Ranking tolerates that; the exclusive claim on the ride is
what guarantees correctness, not the freshness of the position.

Complexity: O(n log n) for n drivers inside the search disk.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional

import h3

from .entities import CandidateDriver, Location
from .enums import DriverStatus, ServiceType

EARTH_RADIUS_KM = 6_371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def location_cell(lat: float, lng: float, resolution: int = 8) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def search_cells(pickup: Location, resolution: int = 8, ring_size: int = 3) -> set[str]:
    """All cells within *ring_size* steps of the pickup cell."""
    origin = location_cell(pickup.latitude, pickup.longitude, resolution)
    return set(h3.grid_disk(origin, ring_size))


def is_eligible(
    driver: CandidateDriver,
    service_type: ServiceType,
    rejected_by: set[int],
    offered_to: Optional[int] = None,
) -> bool:
    return (
        driver.status == DriverStatus.AVAILABLE
        and driver.service_type == service_type
        and driver.id not in rejected_by
        and driver.id != offered_to
    )


def rank_candidates(
    drivers: Iterable[CandidateDriver],
    pickup: Location,
    service_type: ServiceType,
    rejected_by: set[int],
    offered_to: Optional[int] = None,
) -> list[CandidateDriver]:
    """Eligible drivers, nearest to *pickup* first."""
    eligible = [
        d for d in drivers if is_eligible(d, service_type, rejected_by, offered_to)
    ]
    return sorted(
        eligible,
        key=lambda d: (
            haversine_km(pickup.latitude, pickup.longitude, d.lat, d.lng),
            d.id,
        ),
    )
