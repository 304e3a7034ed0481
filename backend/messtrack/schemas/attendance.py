"""
Schémas Pydantic du registre des présences et de la saisie manuelle.

Note : on importe datetime en tant que module (dt) pour éviter le conflit de nommage
entre les champs de type date et le type `datetime.date` dans Pydantic v2.
"""

import uuid
import datetime as dt
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from messtrack.schemas.common import MealSlot


class AttendanceRecordResponse(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: uuid.UUID
    identity_id: uuid.UUID
    service_point_id: uuid.UUID
    entitlement_id: Optional[uuid.UUID] = None
    scan_date: dt.date
    meal_slot: MealSlot
    scanned_at: datetime
    verification_method: str
    geo_location: Optional[Dict[str, Any]] = None
    distance_meters: Optional[int] = None
    device_id: Optional[str] = None
    is_valid: bool = True
    annotation: Optional[str] = None
    recorded_by: Optional[uuid.UUID] = None


class ManualAttendanceRequest(BaseModel):
    """Saisie manuelle par un administrateur : justification obligatoire."""
    identity_id: uuid.UUID
    service_point_id: uuid.UUID
    scan_date: dt.date
    meal_slot: MealSlot
    justification: str

    @field_validator("justification")
    @classmethod
    def justification_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Une justification est obligatoire pour une saisie manuelle.")
        return v.strip()
