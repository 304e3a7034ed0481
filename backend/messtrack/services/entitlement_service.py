"""
Porte droit au repas + confirmation préalable.

1. L'identité doit avoir un droit "active" sur le réfectoire, couvrant la date
   de service et incluant le créneau (clé absente = inclus, cf. EntitlementSnapshot).
2. Si le réfectoire exige une confirmation, une confirmation "confirmed" doit
   exister pour (identité, réfectoire, date, créneau).

Le passage de la confirmation à "attended" (mark_attended) n'est PAS commité ici :
il s'exécute dans la transaction finale de l'orchestrateur, avec l'insertion au registre.
"""

import datetime as dt
import logging
import uuid
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from messtrack.models.entitlement import Entitlement, MealConfirmation
from messtrack.schemas.common import MealSlot, RejectReason, Rejection, reject
from messtrack.schemas.entitlement import ConfirmationSnapshot, EntitlementSnapshot, GateDecision
from messtrack.schemas.service_point import ServicePointConfig
from messtrack.services import meal_window

logger = logging.getLogger(__name__)


def find_entitlement(
    db: Session,
    identity_id: uuid.UUID,
    service_point_id: uuid.UUID,
    day: dt.date,
    slot: MealSlot,
) -> Union[EntitlementSnapshot, Rejection]:
    rows = db.execute(
        select(Entitlement)
        .where(
            Entitlement.identity_id == identity_id,
            Entitlement.service_point_id == service_point_id,
            Entitlement.status == "active",
            Entitlement.start_date <= day,
            Entitlement.end_date >= day,
        )
        .order_by(Entitlement.end_date.desc())
    ).scalars().all()

    candidates = [EntitlementSnapshot.model_validate(row) for row in rows]
    if not candidates:
        return reject(RejectReason.NO_ENTITLEMENT, meal_date=day.isoformat(),
                      message="Aucun abonnement actif pour cette date.")

    for entitlement in candidates:
        if entitlement.includes(slot):
            return entitlement
    return reject(RejectReason.NO_ENTITLEMENT, meal_slot=slot.value, meal_date=day.isoformat(),
                  message=f"Le repas {slot.value} n'est pas inclus dans votre abonnement.")


def check_confirmation(
    db: Session,
    service_point: ServicePointConfig,
    identity_id: uuid.UUID,
    day: dt.date,
    slot: MealSlot,
) -> Union[Optional[ConfirmationSnapshot], Rejection]:
    """None si le réfectoire n'exige pas de confirmation."""
    if not service_point.requires_confirmation:
        return None

    row = db.execute(
        select(MealConfirmation).where(
            MealConfirmation.identity_id == identity_id,
            MealConfirmation.service_point_id == service_point.id,
            MealConfirmation.meal_date == day,
            MealConfirmation.meal_slot == slot.value,
        )
    ).scalar()
    if row is None or row.status != "confirmed":
        deadline = meal_window.confirmation_deadline(service_point, day, slot)
        return reject(
            RejectReason.CONFIRMATION_REQUIRED,
            meal_slot=slot.value,
            meal_date=day.isoformat(),
            status=row.status if row is not None else None,
            deadline=deadline.isoformat(),
            message=f"Confirmez le repas {slot.value} à l'avance pour pouvoir pointer.",
        )
    return ConfirmationSnapshot.model_validate(row)


def check(
    db: Session,
    service_point: ServicePointConfig,
    identity_id: uuid.UUID,
    day: dt.date,
    slot: MealSlot,
) -> Union[GateDecision, Rejection]:
    entitlement = find_entitlement(db, identity_id, service_point.id, day, slot)
    if isinstance(entitlement, Rejection):
        return entitlement
    confirmation = check_confirmation(db, service_point, identity_id, day, slot)
    if isinstance(confirmation, Rejection):
        return confirmation
    return GateDecision(entitlement=entitlement, confirmation=confirmation)


def mark_attended(db: Session, confirmation_id: uuid.UUID, now: datetime) -> bool:
    """
    confirmed → attended, conditionné au statut courant. Pas de commit.
    False si un autre scan a déjà consommé la confirmation.
    """
    result = db.execute(
        update(MealConfirmation)
        .where(MealConfirmation.id == confirmation_id, MealConfirmation.status == "confirmed")
        .values(status="attended", attended_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
