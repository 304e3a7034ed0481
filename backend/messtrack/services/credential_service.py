"""
Registre des credentials à clé publique (authentificateurs biométriques type WebAuthn).

Le serveur ne fait aucune correspondance biométrique : il vérifie seulement que
l'assertion a été signée par la clé publique enrôlée, puis applique la règle
anti-rejeu sur le compteur.

Règle anti-rejeu : le nouveau compteur doit être STRICTEMENT supérieur au compteur
stocké. Le contrôle et la mise à jour sont un unique UPDATE conditionnel
(compare-and-set) : deux assertions concurrentes ne peuvent pas lire le même
ancien compteur et réussir toutes les deux. Un compteur non croissant suspend
le credential (authentificateur probablement cloné).

Politique de suspension : pas de réactivation. Un credential suspendu ne sort
de cet état que par révocation, suivie d'un nouvel enrôlement.
"""

import base64
import binascii
import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from messtrack.cache import CacheBackend
from messtrack.config import settings
from messtrack.models.credential import EnrolledCredential
from messtrack.schemas.common import RejectReason, Rejection, reject
from messtrack.schemas.credential import (
    AssertionCredential,
    ChallengeResponse,
    EnrolledCredentialResponse,
    EnrollmentStatus,
)
from messtrack.services.beacon_service import canonical_json

logger = logging.getLogger(__name__)

# Statuts qui bloquent un nouvel enrôlement
BLOCKING_STATUSES = ("active", "suspended")


# ----------------------------------------------------------------
# Outils cryptographiques
# ----------------------------------------------------------------

def b64url_decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def assertion_message(challenge: bytes, counter: int, client_context: Mapping[str, Any]) -> bytes:
    """Octets signés par l'authentificateur pour une assertion."""
    context_hash = hashlib.sha256(canonical_json(client_context).encode("utf-8")).digest()
    return challenge + counter.to_bytes(4, "big") + context_hash


def load_public_key(pem: str):
    """Charge une clé publique PEM ; lève ValueError si elle est illisible ou d'un type non supporté."""
    try:
        key = serialization.load_pem_public_key(pem.encode("utf-8"))
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise ValueError("Clé publique illisible.") from exc
    if not isinstance(key, (ec.EllipticCurvePublicKey, ed25519.Ed25519PublicKey, rsa.RSAPublicKey)):
        raise ValueError("Type de clé publique non supporté (ECDSA, Ed25519 ou RSA attendu).")
    return key


def signature_is_valid(public_key_pem: str, message: bytes, signature: bytes) -> bool:
    """ES256 / EdDSA / RS256 selon le type de clé enrôlée."""
    try:
        key = load_public_key(public_key_pem)
        if isinstance(key, ec.EllipticCurvePublicKey):
            key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
        elif isinstance(key, ed25519.Ed25519PublicKey):
            key.verify(signature, message)
        else:
            key.verify(signature, message, padding.PKCS1v15(), hashes.SHA256())
    except (InvalidSignature, ValueError):
        return False
    return True


# ----------------------------------------------------------------
# Enrôlement / lecture
# ----------------------------------------------------------------

def get_by_credential_id(db: Session, credential_id: str) -> Optional[EnrolledCredential]:
    return db.execute(
        select(EnrolledCredential).where(EnrolledCredential.credential_id == credential_id)
    ).scalar()


def enroll(
    db: Session,
    identity_id: uuid.UUID,
    credential_id: str,
    public_key: str,
    device_info: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Union[EnrolledCredentialResponse, Rejection]:
    """
    Enrôle un authentificateur pour une identité (compteur initialisé à 0).

    AlreadyEnrolled si l'identité possède déjà un credential actif ou suspendu,
    ou si ce credential_id est déjà enregistré. Une double requête concurrente
    est arrêtée par l'index unique partiel (IntegrityError).
    """
    existing = db.execute(
        select(EnrolledCredential).where(
            EnrolledCredential.identity_id == identity_id,
            EnrolledCredential.status.in_(BLOCKING_STATUSES),
        )
    ).scalar()
    if existing:
        return reject(
            RejectReason.ALREADY_ENROLLED,
            status=existing.status,
            message="Un authentificateur est déjà enrôlé. Révoquez-le avant un nouvel enrôlement.",
        )

    if get_by_credential_id(db, credential_id) is not None:
        return reject(RejectReason.ALREADY_ENROLLED, message="Cet authentificateur est déjà enregistré.")

    try:
        load_public_key(public_key)
    except ValueError as exc:
        return reject(RejectReason.MALFORMED_PAYLOAD, message=str(exc))

    credential = EnrolledCredential(
        identity_id=identity_id,
        credential_id=credential_id,
        public_key=public_key,
        sign_count=0,
        status="active",
        device_info=device_info or {},
        enrolled_at=now or datetime.now(timezone.utc),
        usage_count=0,
    )
    db.add(credential)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Enrôlement concurrent refusé pour l'identité %s", identity_id)
        return reject(RejectReason.ALREADY_ENROLLED, message="Un authentificateur est déjà enrôlé.")
    db.refresh(credential)

    logger.info("Authentificateur enrôlé pour l'identité %s (credential %s)", identity_id, credential_id)
    return EnrolledCredentialResponse.model_validate(credential)


def get_enrollment_status(db: Session, identity_id: uuid.UUID) -> EnrollmentStatus:
    credential = db.execute(
        select(EnrolledCredential).where(
            EnrolledCredential.identity_id == identity_id,
            EnrolledCredential.status.in_(BLOCKING_STATUSES),
        )
    ).scalar()
    return EnrollmentStatus(
        identity_id=identity_id,
        is_enrolled=credential is not None and credential.status == "active",
        credential=EnrolledCredentialResponse.model_validate(credential) if credential else None,
    )


def revoke(
    db: Session,
    identity_id: uuid.UUID,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Révoque tous les credentials non révoqués (actifs ou suspendus) de l'identité.
    Idempotent : un second appel renvoie 0. Les lignes sont conservées pour l'audit.
    """
    result = db.execute(
        update(EnrolledCredential)
        .where(
            EnrolledCredential.identity_id == identity_id,
            EnrolledCredential.status.in_(BLOCKING_STATUSES),
        )
        .values(
            status="revoked",
            revoked_at=now or datetime.now(timezone.utc),
            revoked_reason=reason or "Révocation demandée",
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()

    if result.rowcount:
        logger.info("%d credential(s) révoqué(s) pour l'identité %s", result.rowcount, identity_id)
    return result.rowcount


# ----------------------------------------------------------------
# Challenges et vérification d'assertion
# ----------------------------------------------------------------

def _challenge_key(credential_id: str, challenge: str) -> str:
    return f"challenge:{credential_id}:{challenge}"


def issue_challenge(
    db: Session,
    cache: CacheBackend,
    credential_id: str,
) -> Union[ChallengeResponse, Rejection]:
    """Délivre un challenge aléatoire à usage unique, valable CHALLENGE_TTL_SECONDS."""
    credential = get_by_credential_id(db, credential_id)
    if credential is None:
        return reject(RejectReason.CREDENTIAL_NOT_FOUND, message="Authentificateur inconnu.")
    if credential.status != "active":
        return reject(RejectReason.CREDENTIAL_REVOKED, status=credential.status,
                      message="Authentificateur révoqué ou suspendu.")

    challenge = b64url_encode(secrets.token_bytes(32))
    cache.set(
        _challenge_key(credential_id, challenge),
        str(credential.identity_id),
        ttl=settings.CHALLENGE_TTL_SECONDS,
    )
    return ChallengeResponse(
        credential_id=credential_id,
        challenge=challenge,
        expires_in=settings.CHALLENGE_TTL_SECONDS,
    )


def _advance_counter(
    db: Session,
    credential: EnrolledCredential,
    counter: int,
    now: datetime,
) -> Union[EnrolledCredentialResponse, Rejection]:
    """Compare-and-set du compteur ; suspend le credential si le compteur ne progresse pas."""
    result = db.execute(
        update(EnrolledCredential)
        .where(
            EnrolledCredential.id == credential.id,
            EnrolledCredential.status == "active",
            EnrolledCredential.sign_count < counter,
        )
        .values(
            sign_count=counter,
            usage_count=EnrolledCredential.usage_count + 1,
            last_used_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        db.commit()
        db.refresh(credential)
        return EnrolledCredentialResponse.model_validate(credential)

    # Aucune ligne modifiée : soit révoqué entre-temps, soit compteur rejoué
    db.rollback()
    status = db.execute(
        select(EnrolledCredential.status).where(EnrolledCredential.id == credential.id)
    ).scalar()
    if status != "active":
        return reject(RejectReason.CREDENTIAL_REVOKED, status=status,
                      message="Authentificateur révoqué ou suspendu.")

    db.execute(
        update(EnrolledCredential)
        .where(EnrolledCredential.id == credential.id, EnrolledCredential.status == "active")
        .values(status="suspended", suspended_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.warning(
        "Rejeu détecté : credential %s (identité %s) suspendu, compteur reçu %d",
        credential.credential_id, credential.identity_id, counter,
    )
    return reject(
        RejectReason.REPLAY_DETECTED,
        counter=counter,
        message="Compteur de l'authentificateur non croissant : credential suspendu.",
    )


def verify_assertion(
    db: Session,
    cache: CacheBackend,
    assertion: AssertionCredential,
    expected_identity: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> Union[EnrolledCredentialResponse, Rejection]:
    """
    Vérifie une assertion signée dans l'ordre :
    1. credential connu (CredentialNotFound) et actif (CredentialRevoked)
    2. appartient à l'identité attendue (InvalidAssertion)
    3. challenge délivré et non expiré, signature valide (InvalidAssertion)
    4. compteur strictement croissant (ReplayDetected + suspension)

    En cas de succès le compteur est consommé et commité immédiatement :
    l'assertion ne peut plus être rejouée, même si un contrôle ultérieur rejette le scan.
    """
    now = now or datetime.now(timezone.utc)

    credential = get_by_credential_id(db, assertion.credential_id)
    if credential is None:
        return reject(RejectReason.CREDENTIAL_NOT_FOUND, message="Authentificateur inconnu.")
    if credential.status != "active":
        return reject(RejectReason.CREDENTIAL_REVOKED, status=credential.status,
                      message="Authentificateur révoqué ou suspendu.")
    if expected_identity is not None and credential.identity_id != expected_identity:
        logger.warning("Credential %s présenté pour une autre identité", credential.credential_id)
        return reject(RejectReason.INVALID_ASSERTION, message="Authentificateur non associé à cette identité.")

    challenge_key = _challenge_key(credential.credential_id, assertion.signed_challenge.challenge)
    if cache.get(challenge_key) is None:
        return reject(RejectReason.INVALID_ASSERTION, message="Challenge inconnu ou expiré.")

    try:
        challenge = b64url_decode(assertion.signed_challenge.challenge)
        signature = b64url_decode(assertion.signed_challenge.signature)
    except (binascii.Error, ValueError):
        return reject(RejectReason.INVALID_ASSERTION, message="Encodage de l'assertion invalide.")

    message = assertion_message(challenge, assertion.counter, assertion.client_context)
    if not signature_is_valid(credential.public_key, message, signature):
        logger.warning("Signature d'assertion invalide pour le credential %s", credential.credential_id)
        return reject(RejectReason.INVALID_ASSERTION, message="Signature de l'assertion invalide.")

    # Challenge à usage unique : un seul consommateur gagne
    if cache.pop(challenge_key) is None:
        return reject(RejectReason.INVALID_ASSERTION, message="Challenge déjà utilisé.")

    return _advance_counter(db, credential, assertion.counter, now)
