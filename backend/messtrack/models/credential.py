"""
Modèle SQLAlchemy pour les authentificateurs enrôlés (clé publique WebAuthn-like).

Aucune donnée biométrique n'est stockée : uniquement l'identifiant opaque du
credential, sa clé publique et le compteur anti-rejeu.
Un seul credential "active" par identité, garanti par un index unique partiel.
Les lignes ne sont jamais supprimées (audit) : révocation = changement de statut.
"""

import uuid

from sqlalchemy import JSON, BigInteger, Column, DateTime, Index, Integer, String, Text, Uuid, func, text

from messtrack.database import Base


class EnrolledCredential(Base):
    __tablename__ = "enrolled_credentials"
    __table_args__ = (
        Index(
            "uq_credentials_active_identity",
            "identity_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_credentials_identity_status", "identity_id", "status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    identity_id = Column(Uuid, nullable=False)
    credential_id = Column(String(255), unique=True, nullable=False)
    public_key = Column(Text, nullable=False)  # PEM SubjectPublicKeyInfo
    sign_count = Column(BigInteger, nullable=False, default=0)  # Compteur anti-rejeu (uint32 côté authentificateur)
    status = Column(String(20), nullable=False, default="active")  # active, revoked, suspended
    device_info = Column(JSON, nullable=True)

    enrolled_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)

    suspended_at = Column(DateTime(timezone=True), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_reason = Column(String(255), nullable=True)
