"""
Types partagés par tous les services du moteur de présence :
créneaux de repas, motifs de rejet typés et coordonnées GPS.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class MealSlot(str, Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"


class VerificationMethod(str, Enum):
    BEACON = "beacon"
    CREDENTIAL_ASSERTION = "credential_assertion"
    MANUAL = "manual"


class RejectReason(str, Enum):
    """Issues attendues d'une vérification : ce ne sont pas des erreurs serveur."""
    MALFORMED_PAYLOAD = "MalformedPayload"
    INVALID_SIGNATURE = "InvalidSignature"
    CREDENTIAL_NOT_FOUND = "CredentialNotFound"
    CREDENTIAL_REVOKED = "CredentialRevoked"
    INVALID_ASSERTION = "InvalidAssertion"
    REPLAY_DETECTED = "ReplayDetected"
    NO_SERVICE_NOW = "NoServiceNow"
    LOCATION_REQUIRED = "LocationRequired"
    GEOFENCE_VIOLATION = "GeofenceViolation"
    NO_ENTITLEMENT = "NoEntitlement"
    CONFIRMATION_REQUIRED = "ConfirmationRequired"
    DUPLICATE_SCAN = "DuplicateScan"
    STORAGE_UNAVAILABLE = "StorageUnavailable"
    ALREADY_ENROLLED = "AlreadyEnrolled"


class Rejection(BaseModel):
    """
    Rejet typé renvoyé (jamais levé) par les contrôles.
    `detail` doit rester exploitable côté client sans exposer de secret.
    """
    model_config = ConfigDict(frozen=True)

    reason: RejectReason
    detail: Optional[Dict[str, Any]] = None

    @property
    def retryable(self) -> bool:
        # Seule une indisponibilité du stockage peut changer au prochain essai
        return self.reason == RejectReason.STORAGE_UNAVAILABLE


def reject(reason: RejectReason, **detail: Any) -> Rejection:
    return Rejection(reason=reason, detail=detail or None)


class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class GeoLocation(GeoPoint):
    """Position déclarée par le client au moment du scan."""
    accuracy: Optional[float] = Field(default=None, ge=0)
