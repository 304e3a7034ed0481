"""
Router des beacons de réfectoire : QR code à imprimer et rotation du secret.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from messtrack.cache import CacheBackend, get_cache
from messtrack.database import get_db
from messtrack.roles import Actor, Capability, require_capability
from messtrack.schemas.beacon import BeaconPayload
from messtrack.schemas.service_point import ServicePointConfig
from messtrack.services import beacon_service, service_point_service

router = APIRouter(prefix="/api/v1/service-points", tags=["Points de service"])


def _load(db: Session, cache: CacheBackend, service_point_id: uuid.UUID) -> ServicePointConfig:
    service_point = service_point_service.get_service_point(db, cache, service_point_id)
    if service_point is None:
        raise HTTPException(status_code=404, detail=f"Point de service {service_point_id} introuvable.")
    return service_point


@router.get("/{service_point_id}/beacon", response_model=BeaconPayload,
            summary="Contenu signé du QR code du réfectoire")
def get_beacon(
    service_point_id: uuid.UUID,
    db: Session = Depends(get_db),
    cache: CacheBackend = Depends(get_cache),
    actor: Actor = Depends(require_capability(Capability.MANAGE_SERVICE_POINTS)),
):
    return beacon_service.issue_beacon(_load(db, cache, service_point_id))


@router.get("/{service_point_id}/beacon.png", summary="Image PNG du QR code à imprimer")
def get_beacon_png(
    service_point_id: uuid.UUID,
    db: Session = Depends(get_db),
    cache: CacheBackend = Depends(get_cache),
    actor: Actor = Depends(require_capability(Capability.MANAGE_SERVICE_POINTS)),
):
    payload = beacon_service.issue_beacon(_load(db, cache, service_point_id))
    return Response(
        content=beacon_service.render_beacon_png(payload),
        media_type="image/png",
        headers={"Content-Disposition": f'inline; filename="beacon-{payload.code}.png"'},
    )


@router.post("/{service_point_id}/rotate-secret", response_model=BeaconPayload,
             summary="Renouveler le secret du beacon")
def rotate_secret(
    service_point_id: uuid.UUID,
    db: Session = Depends(get_db),
    cache: CacheBackend = Depends(get_cache),
    actor: Actor = Depends(require_capability(Capability.MANAGE_SERVICE_POINTS)),
):
    """
    Invalide immédiatement tous les QR codes imprimés du réfectoire
    et renvoie le nouveau contenu à imprimer.
    """
    try:
        service_point = service_point_service.rotate_beacon_secret(db, cache, service_point_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return beacon_service.issue_beacon(service_point)
