"""
Schémas Pydantic d'une tentative de scan : requête, résultat interne et réponse API.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from messtrack.schemas.attendance import AttendanceRecordResponse
from messtrack.schemas.common import GeoLocation, MealSlot, RejectReason, Rejection
from messtrack.schemas.credential import AssertionCredential


class BeaconCredential(BaseModel):
    """QR code du réfectoire scanné par l'application (texte JSON brut ou objet déjà parsé)."""
    kind: Literal["beacon"]
    payload: Union[str, Dict[str, Any]]


ScanCredential = Annotated[Union[BeaconCredential, AssertionCredential], Field(discriminator="kind")]


class ScanRequest(BaseModel):
    identity: uuid.UUID
    credential: ScanCredential
    geo_location: Optional[GeoLocation] = None
    device_id: Optional[str] = None


class ScanState(str, Enum):
    """Étapes d'une tentative de scan, dans l'ordre d'exécution."""
    RECEIVED = "received"
    CREDENTIAL_VERIFIED = "credential_verified"
    WINDOW_RESOLVED = "window_resolved"
    GEOFENCE_CHECKED = "geofence_checked"
    ENTITLEMENT_CHECKED = "entitlement_checked"
    DUPLICATE_CHECKED = "duplicate_checked"
    COMMITTED = "committed"
    REJECTED = "rejected"


class ScanResult(BaseModel):
    """Issue de l'orchestrateur : présence créée ou premier rejet rencontré."""
    model_config = ConfigDict(frozen=True)

    accepted: bool
    meal_slot: Optional[MealSlot] = None
    record: Optional[AttendanceRecordResponse] = None
    rejection: Optional[Rejection] = None

    @classmethod
    def rejected(cls, rejection: Rejection) -> "ScanResult":
        return cls(accepted=False, rejection=rejection)

    def to_response(self) -> "ScanResponse":
        if self.accepted:
            return ScanResponse(
                accepted=True,
                meal_slot=self.meal_slot,
                record_id=self.record.id,
                timestamp=self.record.scanned_at,
            )
        return ScanResponse(
            accepted=False,
            reason=self.rejection.reason,
            detail=self.rejection.detail,
        )


class ScanResponse(BaseModel):
    accepted: bool
    meal_slot: Optional[MealSlot] = None
    record_id: Optional[uuid.UUID] = None
    timestamp: Optional[datetime] = None
    reason: Optional[RejectReason] = None
    detail: Optional[Dict[str, Any]] = None
