"""
Schémas Pydantic du beacon de localisation (QR code affiché à l'entrée du réfectoire).
"""

import uuid
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

BEACON_KIND = "LOCATION_BEACON"


class BeaconPayload(BaseModel):
    """
    Contenu signé du QR code. La signature est un HMAC-SHA256 (hex) calculé sur
    le JSON canonique de tous les autres champs.
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["LOCATION_BEACON"]
    service_point_id: uuid.UUID
    name: str
    code: str
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius_meters: int = Field(gt=0)
    issued_at: str  # Informatif : aucune expiration côté codec
    signature: str
