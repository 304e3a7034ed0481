"""
Orchestrateur de scan : seul point d'entrée appelé par la couche transport.

Machine à états d'une tentative :
  RECEIVED → CREDENTIAL_VERIFIED → WINDOW_RESOLVED → GEOFENCE_CHECKED
  → ENTITLEMENT_CHECKED → DUPLICATE_CHECKED → COMMITTED
ou REJECTED à n'importe quelle étape (premier échec renvoyé tel quel).

Les contrôles sans accès au registre (credential, créneau, distance) passent
avant ceux qui lisent ou écrivent le registre.

Écritures :
- assertion de credential : le compteur anti-rejeu est consommé et commité
  dès l'étape 1 (une assertion valide est « dépensée » même si le scan échoue ensuite) ;
- présence + confirmation → attended : une seule transaction, tout ou rien.
  Le doublon est tranché par la contrainte unique au moment de l'INSERT.

Toute erreur de stockage (base ou cache) annule la transaction et devient
StorageUnavailable, seul motif pour lequel l'appelant peut réessayer.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from messtrack.cache import CacheBackend, CacheUnavailableError
from messtrack.schemas.beacon import BeaconPayload
from messtrack.schemas.common import RejectReason, Rejection, VerificationMethod, reject
from messtrack.schemas.credential import AssertionCredential
from messtrack.schemas.entitlement import GateDecision
from messtrack.schemas.attendance import AttendanceRecordResponse
from messtrack.schemas.scan import BeaconCredential, ScanRequest, ScanResult, ScanState
from messtrack.schemas.service_point import ResolvedSlot, ServicePointConfig
from messtrack.services import (
    attendance_service,
    beacon_service,
    credential_service,
    entitlement_service,
    geofence,
    meal_window,
    service_point_service,
)

logger = logging.getLogger(__name__)

Verified = Tuple[ServicePointConfig, VerificationMethod, Optional[BeaconPayload]]


def _trace(request: ScanRequest, state: ScanState) -> None:
    logger.debug("Scan identité %s : %s", request.identity, state.value)


def _rejected(request: ScanRequest, state: ScanState, rejection: Rejection) -> ScanResult:
    logger.info(
        "Scan refusé pour l'identité %s après l'étape %s : %s",
        request.identity, state.value, rejection.reason.value,
    )
    return ScanResult.rejected(rejection)


def _log_beacon_drift(service_point: ServicePointConfig, beacon: BeaconPayload) -> None:
    """Le réfectoire fait foi : un QR imprimé avec d'anciennes coordonnées est seulement signalé."""
    if (
        beacon.radius_meters != service_point.radius_meters
        or beacon.latitude != service_point.latitude
        or beacon.longitude != service_point.longitude
    ):
        logger.warning(
            "Beacon du point de service %s obsolète (rayon QR %d m, rayon actuel %d m) : réimpression conseillée",
            service_point.code, beacon.radius_meters, service_point.radius_meters,
        )


def _verify_beacon(
    db: Session,
    cache: CacheBackend,
    credential: BeaconCredential,
) -> Union[Verified, Rejection]:
    decoded = beacon_service.parse_beacon(credential.payload)
    if isinstance(decoded, Rejection):
        return decoded

    service_point = service_point_service.get_service_point(db, cache, decoded.payload.service_point_id)
    if service_point is None:
        return reject(RejectReason.INVALID_SIGNATURE, message="QR code d'un point de service inconnu.")

    beacon = beacon_service.check_signature(decoded, service_point.beacon_secret)
    if isinstance(beacon, Rejection):
        return beacon
    _log_beacon_drift(service_point, beacon)
    return service_point, VerificationMethod.BEACON, beacon


def _verify_assertion(
    db: Session,
    cache: CacheBackend,
    request: ScanRequest,
    credential: AssertionCredential,
    now: datetime,
) -> Union[Verified, Rejection]:
    service_point = service_point_service.get_service_point(db, cache, credential.service_point_id)
    if service_point is None:
        return reject(RejectReason.MALFORMED_PAYLOAD, message="Point de service inconnu.")

    verified = credential_service.verify_assertion(
        db, cache, credential, expected_identity=request.identity, now=now,
    )
    if isinstance(verified, Rejection):
        return verified
    return service_point, VerificationMethod.CREDENTIAL_ASSERTION, None


def _resolve_window(service_point: ServicePointConfig, now: datetime) -> Union[ResolvedSlot, Rejection]:
    if service_point.status != "active":
        return reject(RejectReason.NO_SERVICE_NOW, status=service_point.status,
                      message="Le réfectoire est fermé.")
    return meal_window.resolve(service_point, now)


def _check_geofence(
    service_point: ServicePointConfig,
    request: ScanRequest,
) -> Union[Optional[int], Rejection]:
    """Rayon et coordonnées du réfectoire en base, jamais ceux embarqués dans le QR."""
    if service_point.requires_location:
        return geofence.validate(request.geo_location, service_point.location, service_point.radius_meters)
    if request.geo_location is None:
        return None
    return round(geofence.haversine_meters(request.geo_location, service_point.location))


def _commit(
    db: Session,
    request: ScanRequest,
    service_point: ServicePointConfig,
    method: VerificationMethod,
    resolved: ResolvedSlot,
    decision: GateDecision,
    distance: Optional[int],
    now: datetime,
) -> Union[AttendanceRecordResponse, Rejection]:
    record = attendance_service.insert_record(
        db,
        identity_id=request.identity,
        service_point_id=service_point.id,
        entitlement_id=decision.entitlement.id,
        scan_date=resolved.service_date,
        meal_slot=resolved.meal_slot.value,
        scanned_at=now,
        verification_method=method.value,
        geo_location=request.geo_location.model_dump() if request.geo_location else None,
        distance_meters=distance,
        device_id=request.device_id,
        is_valid=True,
    )
    if isinstance(record, Rejection):
        return record
    _trace(request, ScanState.DUPLICATE_CHECKED)

    if decision.confirmation is not None:
        if not entitlement_service.mark_attended(db, decision.confirmation.id, now):
            # Confirmation consommée entre la lecture et l'écriture : tout annuler
            db.rollback()
            return reject(
                RejectReason.CONFIRMATION_REQUIRED,
                meal_slot=resolved.meal_slot.value,
                meal_date=resolved.service_date.isoformat(),
                message="La confirmation de ce repas a déjà été utilisée.",
            )

    db.commit()
    db.refresh(record)
    return AttendanceRecordResponse.model_validate(record)


def _run(db: Session, cache: CacheBackend, request: ScanRequest, now: datetime) -> ScanResult:
    _trace(request, ScanState.RECEIVED)

    # 1. Authenticité du credential (+ anti-rejeu pour les assertions)
    if isinstance(request.credential, BeaconCredential):
        verified = _verify_beacon(db, cache, request.credential)
    else:
        verified = _verify_assertion(db, cache, request, request.credential, now)
    if isinstance(verified, Rejection):
        return _rejected(request, ScanState.RECEIVED, verified)
    service_point, method, _ = verified
    _trace(request, ScanState.CREDENTIAL_VERIFIED)

    # 2. Créneau de repas
    resolved = _resolve_window(service_point, now)
    if isinstance(resolved, Rejection):
        return _rejected(request, ScanState.CREDENTIAL_VERIFIED, resolved)
    _trace(request, ScanState.WINDOW_RESOLVED)

    # 3. Géorepérage
    distance = _check_geofence(service_point, request)
    if isinstance(distance, Rejection):
        return _rejected(request, ScanState.WINDOW_RESOLVED, distance)
    _trace(request, ScanState.GEOFENCE_CHECKED)

    # 4. Droit au repas + confirmation
    decision = entitlement_service.check(
        db, service_point, request.identity, resolved.service_date, resolved.meal_slot,
    )
    if isinstance(decision, Rejection):
        db.rollback()
        return _rejected(request, ScanState.GEOFENCE_CHECKED, decision)
    _trace(request, ScanState.ENTITLEMENT_CHECKED)

    # 5. Doublon + écriture atomique
    record = _commit(db, request, service_point, method, resolved, decision, distance, now)
    if isinstance(record, Rejection):
        return _rejected(request, ScanState.ENTITLEMENT_CHECKED, record)
    _trace(request, ScanState.COMMITTED)

    logger.info(
        "Présence enregistrée : identité %s, %s, %s %s (%s)",
        request.identity, service_point.code, resolved.service_date,
        resolved.meal_slot.value, method.value,
    )
    return ScanResult(accepted=True, meal_slot=resolved.meal_slot, record=record)


def process_scan(
    db: Session,
    cache: CacheBackend,
    request: ScanRequest,
    now: Optional[datetime] = None,
) -> ScanResult:
    """
    Décide si l'identité peut être pointée présente pour le repas en cours.
    Renvoie toujours un ScanResult (jamais d'exception pour un rejet attendu).
    """
    now = now or datetime.now(timezone.utc)
    try:
        return _run(db, cache, request, now)
    except (SQLAlchemyError, CacheUnavailableError) as exc:
        logger.error("Stockage indisponible pendant le scan de l'identité %s : %s", request.identity, exc)
        try:
            db.rollback()
        except SQLAlchemyError as rollback_exc:
            logger.error("Rollback impossible après l'échec du scan : %s", rollback_exc)
        return ScanResult.rejected(
            reject(RejectReason.STORAGE_UNAVAILABLE, message="Service momentanément indisponible, réessayez.")
        )
