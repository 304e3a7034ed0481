"""
Modèle SQLAlchemy du registre des présences (append-only).

La contrainte unique (identity_id, service_point_id, scan_date, meal_slot) est
le garde-fou anti-doublon : deux scans concurrents pour le même repas ne
peuvent pas tous deux être insérés, quel que soit l'ordre d'arrivée.
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)

from messtrack.database import Base


class AttendanceRecord(Base):
    """Présence acceptée : beacon QR, assertion de credential ou saisie manuelle."""
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint(
            "identity_id", "service_point_id", "scan_date", "meal_slot",
            name="uq_attendance_identity_point_date_slot",
        ),
        Index("idx_attendance_point_date", "service_point_id", "scan_date"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    identity_id = Column(Uuid, nullable=False)
    service_point_id = Column(Uuid, ForeignKey("service_points.id", ondelete="CASCADE"), nullable=False)
    entitlement_id = Column(Uuid, ForeignKey("entitlements.id"), nullable=True)  # NULL possible en manuel

    scan_date = Column(Date, nullable=False)          # Date de service (heure locale du réfectoire)
    meal_slot = Column(String(20), nullable=False)    # breakfast, lunch, dinner
    scanned_at = Column(DateTime(timezone=True), nullable=False)
    verification_method = Column(String(30), nullable=False)  # beacon, credential_assertion, manual

    geo_location = Column(JSON, nullable=True)        # Snapshot {latitude, longitude, accuracy}
    distance_meters = Column(Integer, nullable=True)
    device_id = Column(String(255), nullable=True)

    is_valid = Column(Boolean, nullable=False, default=True)
    annotation = Column(Text, nullable=True)          # Justification si manuel
    recorded_by = Column(Uuid, nullable=True)         # Auteur d'une saisie manuelle

    created_at = Column(DateTime, server_default=func.now())
