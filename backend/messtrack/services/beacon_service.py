"""
Codec du beacon de localisation : émission, signature et vérification du QR code
affiché à l'entrée de chaque réfectoire.

Format : objet JSON {kind, service_point_id, name, code, latitude, longitude,
radius_meters, issued_at, signature}. La signature est un HMAC-SHA256 hex sur le
JSON canonique (clés triées, sans espaces) de tous les champs sauf `signature`.

La vérification recalcule le HMAC sur les champs REÇUS (et non sur une
re-sérialisation du modèle) : tout octet ajouté, retiré ou modifié invalide le QR.
La comparaison utilise hmac.compare_digest (temps constant).
"""

import hashlib
import hmac
import io
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, NamedTuple, Optional, Union

import qrcode
from pydantic import ValidationError

from messtrack.schemas.beacon import BEACON_KIND, BeaconPayload
from messtrack.schemas.common import RejectReason, Rejection, reject
from messtrack.schemas.service_point import ServicePointConfig

logger = logging.getLogger(__name__)

RawBeacon = Union[str, bytes, Mapping[str, Any]]

# Capacité maximale d'un QR code (version 40, mode octet, correction L)
MAX_BEACON_LENGTH = 2953


def canonical_json(fields: Mapping[str, Any]) -> str:
    return json.dumps(fields, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sign_fields(fields: Mapping[str, Any], secret: str) -> str:
    """HMAC-SHA256 hex des champs (hors `signature`)."""
    unsigned = {k: v for k, v in fields.items() if k != "signature"}
    return hmac.new(
        secret.encode("utf-8"),
        canonical_json(unsigned).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


class DecodedBeacon(NamedTuple):
    """Champs reçus (base du HMAC) et leur version validée."""
    fields: Dict[str, Any]
    payload: BeaconPayload


def parse_beacon(raw: RawBeacon) -> Union[DecodedBeacon, Rejection]:
    """
    Parse et valide une seule fois le contenu brut du QR code.
    MalformedPayload si ce n'est pas un objet JSON de type LOCATION_BEACON
    avec des champs valides.
    """
    if isinstance(raw, Mapping):
        data = dict(raw)
    else:
        if isinstance(raw, (str, bytes)) and len(raw) > MAX_BEACON_LENGTH:
            return reject(RejectReason.MALFORMED_PAYLOAD, message="QR code illisible (contenu trop long).")
        try:
            data = json.loads(raw)
        except (TypeError, ValueError, RecursionError):
            return reject(RejectReason.MALFORMED_PAYLOAD, message="QR code illisible (JSON invalide).")

    if not isinstance(data, dict):
        return reject(RejectReason.MALFORMED_PAYLOAD, message="QR code illisible (objet JSON attendu).")
    if data.get("kind") != BEACON_KIND:
        return reject(RejectReason.MALFORMED_PAYLOAD, message="Type de QR code invalide.")

    try:
        payload = BeaconPayload.model_validate(data)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        return reject(RejectReason.MALFORMED_PAYLOAD, message="Champs du QR code invalides.", fields=fields)
    return DecodedBeacon(data, payload)


def decode_beacon(raw: RawBeacon) -> Union[Dict[str, Any], Rejection]:
    """Renvoie le dictionnaire reçu tel quel, ou MalformedPayload."""
    decoded = parse_beacon(raw)
    if isinstance(decoded, Rejection):
        return decoded
    return decoded.fields


def verify_signature(data: Mapping[str, Any], secret: str) -> bool:
    provided = data.get("signature")
    if not isinstance(provided, str):
        return False
    expected = sign_fields(data, secret)
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def check_signature(decoded: DecodedBeacon, secret: str) -> Union[BeaconPayload, Rejection]:
    """Vérifie un beacon déjà parsé avec le secret courant du point de service."""
    if not verify_signature(decoded.fields, secret):
        logger.warning("Signature de beacon invalide (point de service %s)", decoded.payload.service_point_id)
        return reject(RejectReason.INVALID_SIGNATURE, message="Signature du QR code invalide.")
    return decoded.payload


def verify_beacon(raw: RawBeacon, secret: str) -> Union[BeaconPayload, Rejection]:
    """Décode puis vérifie la signature avec le secret courant du point de service."""
    decoded = parse_beacon(raw)
    if isinstance(decoded, Rejection):
        return decoded
    return check_signature(decoded, secret)


def issue_beacon(service_point: ServicePointConfig, issued_at: Optional[datetime] = None) -> BeaconPayload:
    """Construit et signe le beacon d'un point de service avec son secret courant."""
    issued_at = issued_at or service_point.beacon_issued_at or datetime.now(timezone.utc)
    fields = {
        "kind": BEACON_KIND,
        "service_point_id": str(service_point.id),
        "name": service_point.name,
        "code": service_point.code,
        "latitude": service_point.latitude,
        "longitude": service_point.longitude,
        "radius_meters": service_point.radius_meters,
        "issued_at": issued_at.isoformat(),
    }
    fields["signature"] = sign_fields(fields, service_point.beacon_secret)
    return BeaconPayload.model_validate(fields)


def beacon_to_json(payload: BeaconPayload) -> str:
    """Texte encodé dans le QR code (mêmes valeurs que celles signées)."""
    return canonical_json(payload.model_dump(mode="json"))


def render_beacon_png(payload: BeaconPayload) -> bytes:
    """Génère l'image PNG du QR code à imprimer à l'entrée du réfectoire."""
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_H, box_size=10, border=4)
    qr.add_data(beacon_to_json(payload))
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
