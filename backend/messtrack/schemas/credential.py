"""
Schémas Pydantic pour l'enrôlement des authentificateurs et les assertions signées.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EnrollmentRequest(BaseModel):
    """Enrôlement d'un authentificateur déjà validé côté client (clé publique PEM)."""
    identity_id: uuid.UUID
    credential_id: str
    public_key: str
    device_info: Optional[Dict[str, Any]] = None

    @field_validator("credential_id", "public_key")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Donnée de credential manquante.")
        return v.strip()


class EnrolledCredentialResponse(BaseModel):
    """Vue publique d'un credential enrôlé (la clé publique n'est jamais renvoyée)."""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: uuid.UUID
    identity_id: uuid.UUID
    credential_id: str
    status: str
    sign_count: int
    usage_count: int
    enrolled_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    device_info: Optional[Dict[str, Any]] = None


class EnrollmentStatus(BaseModel):
    identity_id: uuid.UUID
    is_enrolled: bool
    credential: Optional[EnrolledCredentialResponse] = None


class ChallengeResponse(BaseModel):
    credential_id: str
    challenge: str          # base64url, à signer par l'authentificateur
    expires_in: int         # secondes


class SignedChallenge(BaseModel):
    challenge: str          # base64url, tel que délivré par /challenge
    signature: str          # base64url


class AssertionCredential(BaseModel):
    """
    Assertion produite par l'authentificateur. Le message signé est :
    challenge || compteur (4 octets big-endian) || SHA-256(client_context canonique).
    """
    kind: Literal["assertion"]
    service_point_id: uuid.UUID
    credential_id: str
    signed_challenge: SignedChallenge
    counter: int = Field(ge=0, lt=2 ** 32)
    client_context: Dict[str, Any] = Field(default_factory=dict)


class RevokeRequest(BaseModel):
    identity_id: uuid.UUID
    reason: Optional[str] = None


class RevokeResponse(BaseModel):
    identity_id: uuid.UUID
    revoked_count: int
