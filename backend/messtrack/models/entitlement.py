"""
Modèles SQLAlchemy pour les droits au repas (abonnements) et les confirmations.
Les deux tables appartiennent aux workflows facturation / confirmation ;
le moteur lit les droits et fait seulement passer une confirmation à "attended".
"""

import uuid

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    Uuid,
    func,
)

from messtrack.database import Base


class Entitlement(Base):
    """Droit d'accès d'une identité à un réfectoire sur une période."""
    __tablename__ = "entitlements"
    __table_args__ = (
        Index("idx_entitlements_lookup", "identity_id", "service_point_id", "status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    identity_id = Column(Uuid, nullable=False)
    service_point_id = Column(Uuid, ForeignKey("service_points.id", ondelete="CASCADE"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    meals_included = Column(JSON, nullable=True)  # {"breakfast": true, ...}, clé absente = inclus
    status = Column(String(20), nullable=False, default="active")  # active, expired, cancelled
    created_at = Column(DateTime, server_default=func.now())


class MealConfirmation(Base):
    """Confirmation préalable d'un repas (une seule par identité / réfectoire / date / créneau)."""
    __tablename__ = "meal_confirmations"
    __table_args__ = (
        UniqueConstraint(
            "identity_id", "service_point_id", "meal_date", "meal_slot",
            name="uq_confirmation_identity_point_date_slot",
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    identity_id = Column(Uuid, nullable=False)
    service_point_id = Column(Uuid, ForeignKey("service_points.id", ondelete="CASCADE"), nullable=False)
    meal_date = Column(Date, nullable=False)
    meal_slot = Column(String(20), nullable=False)  # breakfast, lunch, dinner
    status = Column(String(20), nullable=False, default="confirmed")  # confirmed, attended
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    attended_at = Column(DateTime(timezone=True), nullable=True)
