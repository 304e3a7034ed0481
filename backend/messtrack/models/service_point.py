"""
Modèle SQLAlchemy pour les points de service (réfectoires).
Créés par le back-office d'administration ; le moteur de présence les lit
et ne modifie que le secret de signature du beacon (rotation).
"""

import uuid
from datetime import time

from sqlalchemy import Boolean, Column, DateTime, Float, Integer, String, Time, Uuid, func

from messtrack.config import settings
from messtrack.database import Base


class ServicePoint(Base):
    """Réfectoire : position, rayon autorisé, créneaux de repas et règles de confirmation."""
    __tablename__ = "service_points"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    code = Column(String(50), unique=True, nullable=False)  # Ex: "MESS-A"
    status = Column(String(20), default="active")  # active, inactive, maintenance

    beacon_secret = Column(String(128), nullable=False)  # Clé HMAC du QR affiché à l'entrée
    beacon_issued_at = Column(DateTime(timezone=True), nullable=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    radius_meters = Column(Integer, nullable=False, default=lambda: settings.DEFAULT_GEOFENCE_RADIUS_METERS)
    requires_location = Column(Boolean, nullable=False, default=True)

    timezone = Column(String(64), nullable=False, default=lambda: settings.DEFAULT_TIMEZONE)
    breakfast_start = Column(Time, nullable=False, default=time(7, 0))
    breakfast_end = Column(Time, nullable=False, default=time(10, 0))
    lunch_start = Column(Time, nullable=False, default=time(12, 0))
    lunch_end = Column(Time, nullable=False, default=time(15, 0))
    dinner_start = Column(Time, nullable=False, default=time(19, 0))
    dinner_end = Column(Time, nullable=False, default=time(22, 0))

    requires_confirmation = Column(Boolean, nullable=False, default=True)
    confirmation_lead_hours = Column(Integer, nullable=False, default=2)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
