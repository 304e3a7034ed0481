"""
Router du scan de présence : enveloppe HTTP de scan_service.process_scan.
Le corps de réponse a toujours la forme ScanResponse ; seul le code HTTP varie.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from messtrack.cache import CacheBackend, get_cache
from messtrack.database import get_db
from messtrack.roles import Actor, Capability, require_capability
from messtrack.schemas.common import RejectReason
from messtrack.schemas.scan import ScanRequest, ScanResponse
from messtrack.services import scan_service

router = APIRouter(prefix="/api/v1", tags=["Scans"])

STATUS_BY_REASON = {
    RejectReason.DUPLICATE_SCAN: 409,
    RejectReason.STORAGE_UNAVAILABLE: 503,
    RejectReason.MALFORMED_PAYLOAD: 400,
    RejectReason.LOCATION_REQUIRED: 400,
    RejectReason.INVALID_SIGNATURE: 401,
    RejectReason.CREDENTIAL_NOT_FOUND: 401,
    RejectReason.CREDENTIAL_REVOKED: 401,
    RejectReason.INVALID_ASSERTION: 401,
    RejectReason.REPLAY_DETECTED: 401,
    RejectReason.NO_SERVICE_NOW: 403,
    RejectReason.GEOFENCE_VIOLATION: 403,
    RejectReason.NO_ENTITLEMENT: 403,
    RejectReason.CONFIRMATION_REQUIRED: 403,
}


@router.post("/scans", response_model=ScanResponse, summary="Pointer sa présence au repas en cours")
def submit_scan(
    data: ScanRequest,
    db: Session = Depends(get_db),
    cache: CacheBackend = Depends(get_cache),
    actor: Actor = Depends(require_capability(Capability.SUBMIT_SCAN)),
):
    """
    Vérifie le QR code du réfectoire ou l'assertion de l'authentificateur,
    puis enregistre la présence si toutes les portes sont franchies.

    Un abonné ne peut pointer que pour lui-même (403 sinon).
    """
    if data.identity != actor.id:
        raise HTTPException(status_code=403, detail="Impossible de pointer pour une autre identité.")

    result = scan_service.process_scan(db, cache, data)
    response = result.to_response()
    if result.accepted:
        return response
    return JSONResponse(
        status_code=STATUS_BY_REASON.get(result.rejection.reason, 400),
        content=response.model_dump(mode="json"),
    )
