"""
Accès en lecture aux points de service, avec cache, et rotation du secret de beacon.

La configuration (secret de signature compris) est mise en cache sous
forme JSON ; toute rotation ou modification administrative doit appeler
invalidate_service_point pour que les workers relisent la base.
"""

import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from messtrack.cache import CacheBackend
from messtrack.config import settings
from messtrack.models.service_point import ServicePoint
from messtrack.schemas.service_point import ServicePointConfig

logger = logging.getLogger(__name__)


def _cache_key(service_point_id: uuid.UUID) -> str:
    return f"service_point:{service_point_id}"


def get_service_point(
    db: Session,
    cache: CacheBackend,
    service_point_id: uuid.UUID,
) -> Optional[ServicePointConfig]:
    """Renvoie la configuration du réfectoire (cache puis base), ou None s'il n'existe pas."""
    cached = cache.get(_cache_key(service_point_id))
    if cached:
        return ServicePointConfig.model_validate_json(cached)

    row = db.execute(select(ServicePoint).where(ServicePoint.id == service_point_id)).scalar()
    if row is None:
        return None

    config = ServicePointConfig.model_validate(row)
    cache.set(
        _cache_key(service_point_id),
        config.model_dump_json(),
        ttl=settings.SERVICE_POINT_CACHE_TTL_SECONDS,
    )
    return config


def invalidate_service_point(cache: CacheBackend, service_point_id: uuid.UUID) -> None:
    cache.delete(_cache_key(service_point_id))


def rotate_beacon_secret(
    db: Session,
    cache: CacheBackend,
    service_point_id: uuid.UUID,
    now: Optional[datetime] = None,
) -> ServicePointConfig:
    """
    Génère un nouveau secret HMAC pour le beacon du réfectoire.
    Les QR codes imprimés avec l'ancien secret cessent immédiatement d'être valides.

    Lève ValueError si le point de service est introuvable.
    """
    row = db.execute(select(ServicePoint).where(ServicePoint.id == service_point_id)).scalar()
    if row is None:
        raise ValueError(f"Point de service {service_point_id} introuvable.")

    row.beacon_secret = secrets.token_hex(32)
    row.beacon_issued_at = now or datetime.now(timezone.utc)
    db.commit()
    db.refresh(row)
    invalidate_service_point(cache, service_point_id)

    logger.info("Secret du beacon renouvelé pour le point de service %s (%s)", row.id, row.code)
    return ServicePointConfig.model_validate(row)
