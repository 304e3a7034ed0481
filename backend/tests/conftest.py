"""
Configuration partagée pour tous les tests.

- client      : API avec la BDD mockée (aucune connexion PostgreSQL) et un cache en mémoire
- db_session  : vraie base SQLite (fichier dans tmp_path) créée depuis Base.metadata
- make_*      : fabriques de lignes (réfectoire, abonnement, confirmation, authentificateur)
"""

import datetime as dt
import secrets
import uuid
from datetime import time

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from unittest.mock import MagicMock

import messtrack.models  # noqa: F401
from messtrack.cache import InMemoryCache, get_cache
from messtrack.database import Base, build_engine, get_db
from messtrack.main import app
from messtrack.models.credential import EnrolledCredential
from messtrack.models.entitlement import Entitlement, MealConfirmation
from messtrack.models.service_point import ServicePoint
from messtrack.schemas.credential import AssertionCredential
from messtrack.services.credential_service import assertion_message, b64url_decode, b64url_encode

# Réfectoire de référence : campus de Bangalore, fuseau Asia/Kolkata (UTC+5:30)
MESS_LAT = 12.9716
MESS_LON = 77.5946
SERVICE_DAY = dt.date(2026, 3, 10)


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def client(cache):
    """Client HTTP de test avec la BDD mockée."""
    mock_db = MagicMock()
    app.dependency_overrides[get_db] = lambda: mock_db
    app.dependency_overrides[get_cache] = lambda: cache
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def session_factory(tmp_path):
    """Fabrique de sessions sur une base SQLite fichier (partageable entre threads)."""
    engine = build_engine(f"sqlite:///{tmp_path / 'messtrack.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def make_service_point(db_session):
    def _make(**kwargs):
        values = dict(
            name="Mess A",
            code=f"MESS-{uuid.uuid4().hex[:6].upper()}",
            status="active",
            beacon_secret=secrets.token_hex(32),
            latitude=MESS_LAT,
            longitude=MESS_LON,
            radius_meters=200,
            requires_location=True,
            timezone="Asia/Kolkata",
            breakfast_start=time(7, 0),
            breakfast_end=time(10, 0),
            lunch_start=time(12, 0),
            lunch_end=time(15, 0),
            dinner_start=time(19, 0),
            dinner_end=time(22, 0),
            requires_confirmation=False,
            confirmation_lead_hours=2,
        )
        values.update(kwargs)
        sp = ServicePoint(**values)
        db_session.add(sp)
        db_session.commit()
        db_session.refresh(sp)
        return sp

    return _make


@pytest.fixture
def make_entitlement(db_session):
    def _make(identity_id, service_point_id, **kwargs):
        values = dict(
            identity_id=identity_id,
            service_point_id=service_point_id,
            start_date=SERVICE_DAY - dt.timedelta(days=10),
            end_date=SERVICE_DAY + dt.timedelta(days=20),
            meals_included={"breakfast": True, "lunch": True, "dinner": True},
            status="active",
        )
        values.update(kwargs)
        entitlement = Entitlement(**values)
        db_session.add(entitlement)
        db_session.commit()
        db_session.refresh(entitlement)
        return entitlement

    return _make


@pytest.fixture
def make_confirmation(db_session):
    def _make(identity_id, service_point_id, meal_slot="lunch", meal_date=SERVICE_DAY, status="confirmed"):
        confirmation = MealConfirmation(
            identity_id=identity_id,
            service_point_id=service_point_id,
            meal_date=meal_date,
            meal_slot=meal_slot,
            status=status,
        )
        db_session.add(confirmation)
        db_session.commit()
        db_session.refresh(confirmation)
        return confirmation

    return _make


@pytest.fixture
def key_pair():
    """Paire de clés ECDSA P-256 (authentificateur simulé) : (clé privée, clé publique PEM)."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    public_pem = private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return private_key, public_pem


@pytest.fixture
def make_credential(db_session, key_pair):
    def _make(identity_id, status="active", sign_count=0, credential_id=None):
        credential = EnrolledCredential(
            identity_id=identity_id,
            credential_id=credential_id or f"cred-{uuid.uuid4().hex}",
            public_key=key_pair[1],
            sign_count=sign_count,
            status=status,
            device_info={},
            usage_count=0,
        )
        db_session.add(credential)
        db_session.commit()
        db_session.refresh(credential)
        return credential

    return _make


@pytest.fixture
def make_assertion(key_pair):
    """Signe une assertion comme le ferait l'authentificateur du téléphone."""

    def _make(credential_id, service_point_id, challenge, counter, client_context=None, private_key=None):
        context = client_context or {"origin": "https://mess.example.org"}
        message = assertion_message(b64url_decode(challenge), counter, context)
        signer = private_key or key_pair[0]
        signature = signer.sign(message, ec.ECDSA(hashes.SHA256()))
        return AssertionCredential(
            kind="assertion",
            service_point_id=service_point_id,
            credential_id=credential_id,
            signed_challenge={"challenge": challenge, "signature": b64url_encode(signature)},
            counter=counter,
            client_context=context,
        )

    return _make
