"""
Router du registre des présences : saisie manuelle (administrateurs) et consultation.
"""

import datetime as dt
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from messtrack.database import get_db
from messtrack.roles import Actor, Capability, require_capability
from messtrack.schemas.attendance import AttendanceRecordResponse, ManualAttendanceRequest
from messtrack.schemas.common import Rejection
from messtrack.services import attendance_service

router = APIRouter(prefix="/api/v1/attendance", tags=["Présences"])


@router.post("/manual", response_model=AttendanceRecordResponse, status_code=201,
             summary="Saisie manuelle d'une présence")
def record_manual_attendance(
    data: ManualAttendanceRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability(Capability.RECORD_MANUAL)),
):
    """
    Enregistre une présence sans scan (téléphone perdu, panne réseau...).
    Justification obligatoire ; l'auteur est conservé dans recorded_by.

    Retourne 404 si le point de service est introuvable,
    409 si une présence existe déjà pour ce repas.
    """
    try:
        result = attendance_service.record_manual(db, data, actor.id)
    except ValueError as e:
        msg = str(e)
        if "introuvable" in msg:
            raise HTTPException(status_code=404, detail=msg)
        raise HTTPException(status_code=400, detail=msg)
    if isinstance(result, Rejection):
        raise HTTPException(status_code=409, detail=result.detail)
    return result


@router.get("", response_model=List[AttendanceRecordResponse], summary="Consulter le registre")
def list_attendance(
    identity_id: Optional[uuid.UUID] = None,
    service_point_id: Optional[uuid.UUID] = None,
    day: Optional[dt.date] = None,
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_capability(Capability.VIEW_LEDGER)),
):
    return attendance_service.list_records(db, identity_id, service_point_id, day, limit)
