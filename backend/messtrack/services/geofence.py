"""
Contrôle de géorepérage : distance orthodromique (Haversine) entre la position
déclarée et le réfectoire, comparée au rayon autorisé.
"""

import math
from typing import Optional, Union

from messtrack.schemas.common import GeoPoint, RejectReason, Rejection, reject

EARTH_RADIUS_M = 6371000.0  # rayon moyen de la Terre en mètres


def haversine_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Distance à vol d'oiseau entre deux points, en mètres."""
    dlat = math.radians(b.latitude - a.latitude)
    dlon = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(a.latitude)) * math.cos(math.radians(b.latitude)) * math.sin(dlon / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def validate(
    claimed: Optional[GeoPoint],
    centre: GeoPoint,
    radius_meters: int,
) -> Union[int, Rejection]:
    """
    Renvoie la distance arrondie au mètre si la position est dans le rayon
    (bord inclus), sinon GeofenceViolation {distance, allowed}.
    Sans position déclarée : LocationRequired.
    """
    if claimed is None:
        return reject(RejectReason.LOCATION_REQUIRED, message="La géolocalisation est obligatoire pour pointer.")

    distance = round(haversine_meters(claimed, centre))
    if distance > radius_meters:
        return reject(
            RejectReason.GEOFENCE_VIOLATION,
            distance=distance,
            allowed=radius_meters,
            message=f"Vous êtes à {distance} m du réfectoire (maximum autorisé : {radius_meters} m).",
        )
    return distance
