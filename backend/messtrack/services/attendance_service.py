"""
Registre des présences (append-only).

Stratégie anti-doublon : aucune lecture préalable. L'INSERT est protégé par la
contrainte unique (identity_id, service_point_id, scan_date, meal_slot) ; une
IntegrityError signifie qu'un autre scan a déjà été commité pour ce repas et
devient un rejet DuplicateScan. C'est le commit, pas l'ordre d'arrivée, qui
désigne le gagnant entre deux scans concurrents. Un scan réussi puis rejoué
(retry après timeout) est donc rejeté, jamais compté deux fois.
"""

import datetime as dt
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from messtrack.models.attendance import AttendanceRecord
from messtrack.models.service_point import ServicePoint
from messtrack.schemas.attendance import AttendanceRecordResponse, ManualAttendanceRequest
from messtrack.schemas.common import RejectReason, Rejection, VerificationMethod, reject
from messtrack.services import entitlement_service

logger = logging.getLogger(__name__)


def insert_record(db: Session, **fields: Any) -> Union[AttendanceRecord, Rejection]:
    """
    Ajoute la présence et force l'INSERT (flush) sans commiter.
    Doit être la première écriture de la transaction : en cas de doublon,
    la transaction entière est annulée.
    """
    record = AttendanceRecord(**fields)
    db.add(record)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info(
            "Doublon refusé par le registre : identité %s, point %s, %s %s",
            fields.get("identity_id"), fields.get("service_point_id"),
            fields.get("scan_date"), fields.get("meal_slot"),
        )
        return reject(
            RejectReason.DUPLICATE_SCAN,
            meal_slot=str(fields.get("meal_slot")),
            scan_date=str(fields.get("scan_date")),
            message="Présence déjà enregistrée pour ce repas.",
        )
    return record


def record_manual(
    db: Session,
    data: ManualAttendanceRequest,
    actor_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> Union[AttendanceRecordResponse, Rejection]:
    """
    Saisie manuelle par un administrateur : pas de contrôle de credential,
    de créneau ni de géorepérage, mais l'unicité du registre s'applique.
    Le droit actif est rattaché s'il existe (sinon entitlement_id reste NULL).

    Lève ValueError si le point de service est introuvable.
    """
    exists = db.execute(select(ServicePoint.id).where(ServicePoint.id == data.service_point_id)).scalar()
    if exists is None:
        raise ValueError(f"Point de service {data.service_point_id} introuvable.")

    entitlement = entitlement_service.find_entitlement(
        db, data.identity_id, data.service_point_id, data.scan_date, data.meal_slot,
    )
    entitlement_id = None if isinstance(entitlement, Rejection) else entitlement.id

    record = insert_record(
        db,
        identity_id=data.identity_id,
        service_point_id=data.service_point_id,
        entitlement_id=entitlement_id,
        scan_date=data.scan_date,
        meal_slot=data.meal_slot.value,
        scanned_at=now or datetime.now(timezone.utc),
        verification_method=VerificationMethod.MANUAL.value,
        is_valid=True,
        annotation=data.justification,
        recorded_by=actor_id,
    )
    if isinstance(record, Rejection):
        return record

    db.commit()
    db.refresh(record)
    logger.info(
        "Présence manuelle enregistrée par %s : identité %s, %s %s",
        actor_id, data.identity_id, data.scan_date, data.meal_slot.value,
    )
    return AttendanceRecordResponse.model_validate(record)


def list_records(
    db: Session,
    identity_id: Optional[uuid.UUID] = None,
    service_point_id: Optional[uuid.UUID] = None,
    day: Optional[dt.date] = None,
    limit: int = 200,
) -> List[AttendanceRecordResponse]:
    """Historique des présences, du plus récent au plus ancien."""
    query = select(AttendanceRecord)
    if identity_id is not None:
        query = query.where(AttendanceRecord.identity_id == identity_id)
    if service_point_id is not None:
        query = query.where(AttendanceRecord.service_point_id == service_point_id)
    if day is not None:
        query = query.where(AttendanceRecord.scan_date == day)
    rows = db.execute(
        query.order_by(AttendanceRecord.scanned_at.desc()).limit(limit)
    ).scalars().all()
    return [AttendanceRecordResponse.model_validate(row) for row in rows]
