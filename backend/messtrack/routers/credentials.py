"""
Router des authentificateurs enrôlés : enrôlement, challenge, statut, révocation.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from messtrack.cache import CacheBackend, get_cache
from messtrack.database import get_db
from messtrack.roles import Actor, Capability, get_actor, require_capability
from messtrack.schemas.common import RejectReason, Rejection
from messtrack.schemas.credential import (
    ChallengeResponse,
    EnrolledCredentialResponse,
    EnrollmentRequest,
    EnrollmentStatus,
    RevokeRequest,
    RevokeResponse,
)
from messtrack.services import credential_service

router = APIRouter(prefix="/api/v1/credentials", tags=["Authentificateurs"])


def _ensure_self_or_admin(actor: Actor, identity_id: uuid.UUID) -> None:
    if not actor.can_act_for(identity_id, Capability.MANAGE_CREDENTIALS):
        raise HTTPException(status_code=403, detail="Action non autorisée pour cette identité.")


@router.post("", response_model=EnrolledCredentialResponse, status_code=201,
             summary="Enrôler un authentificateur")
def enroll_credential(
    data: EnrollmentRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability(Capability.MANAGE_OWN_CREDENTIAL)),
):
    """
    Enregistre la clé publique d'un authentificateur validé côté client.

    Retourne 409 si un authentificateur est déjà enrôlé (actif ou suspendu),
    400 si la clé publique est illisible.
    """
    if data.identity_id != actor.id:
        raise HTTPException(status_code=403, detail="Enrôlement possible uniquement pour soi-même.")

    result = credential_service.enroll(
        db, data.identity_id, data.credential_id, data.public_key, data.device_info,
    )
    if isinstance(result, Rejection):
        status = 409 if result.reason == RejectReason.ALREADY_ENROLLED else 400
        raise HTTPException(status_code=status, detail=result.detail)
    return result


@router.post("/{credential_id}/challenge", response_model=ChallengeResponse,
             summary="Obtenir un challenge à signer")
def get_challenge(
    credential_id: str,
    db: Session = Depends(get_db),
    cache: CacheBackend = Depends(get_cache),
    actor: Actor = Depends(require_capability(Capability.SUBMIT_SCAN)),
):
    """Challenge aléatoire à usage unique, à inclure dans la prochaine assertion."""
    result = credential_service.issue_challenge(db, cache, credential_id)
    if isinstance(result, Rejection):
        status = 404 if result.reason == RejectReason.CREDENTIAL_NOT_FOUND else 403
        raise HTTPException(status_code=status, detail=result.detail)
    return result


@router.get("/status/{identity_id}", response_model=EnrollmentStatus,
            summary="Statut d'enrôlement d'une identité")
def get_status(
    identity_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    _ensure_self_or_admin(actor, identity_id)
    return credential_service.get_enrollment_status(db, identity_id)


@router.post("/revoke", response_model=RevokeResponse, summary="Révoquer les authentificateurs")
def revoke_credentials(
    data: RevokeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """
    Révoque tous les authentificateurs actifs ou suspendus de l'identité.
    Idempotent : un second appel renvoie revoked_count = 0.
    """
    _ensure_self_or_admin(actor, data.identity_id)
    count = credential_service.revoke(db, data.identity_id, data.reason)
    return RevokeResponse(identity_id=data.identity_id, revoked_count=count)
