"""
Tests d'intégration API des authentificateurs.
Testent POST /api/v1/credentials
      POST /api/v1/credentials/{credential_id}/challenge
      GET  /api/v1/credentials/status/{identity_id}
      POST /api/v1/credentials/revoke
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import patch

from messtrack.schemas.common import RejectReason, reject
from messtrack.schemas.credential import ChallengeResponse, EnrolledCredentialResponse, EnrollmentStatus


# --- Helpers ---

def headers(actor_id, role="subscriber"):
    return {"X-Actor-Id": str(actor_id), "X-Actor-Role": role}


def make_credential_response(identity_id, **kwargs) -> EnrolledCredentialResponse:
    return EnrolledCredentialResponse(
        id=kwargs.get("id", uuid.uuid4()),
        identity_id=identity_id,
        credential_id=kwargs.get("credential_id", "cred-1"),
        status=kwargs.get("status", "active"),
        sign_count=0,
        usage_count=0,
        enrolled_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )


def enrollment_body(identity_id):
    return {
        "identity_id": str(identity_id),
        "credential_id": "cred-1",
        "public_key": "-----BEGIN PUBLIC KEY-----\n...\n-----END PUBLIC KEY-----",
    }


# ============================================================
# POST /api/v1/credentials
# ============================================================

def test_enrolement_succes_201(client):
    identity = uuid.uuid4()
    with patch("messtrack.routers.credentials.credential_service.enroll") as mock:
        mock.return_value = make_credential_response(identity)
        response = client.post("/api/v1/credentials", json=enrollment_body(identity), headers=headers(identity))

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "active"
    assert "public_key" not in data


def test_enrolement_deja_enrole_409(client):
    identity = uuid.uuid4()
    with patch("messtrack.routers.credentials.credential_service.enroll") as mock:
        mock.return_value = reject(RejectReason.ALREADY_ENROLLED, message="Déjà enrôlé.")
        response = client.post("/api/v1/credentials", json=enrollment_body(identity), headers=headers(identity))

    assert response.status_code == 409


def test_enrolement_cle_illisible_400(client):
    identity = uuid.uuid4()
    with patch("messtrack.routers.credentials.credential_service.enroll") as mock:
        mock.return_value = reject(RejectReason.MALFORMED_PAYLOAD, message="Clé publique illisible.")
        response = client.post("/api/v1/credentials", json=enrollment_body(identity), headers=headers(identity))

    assert response.status_code == 400


def test_enrolement_pour_autrui_403(client):
    response = client.post(
        "/api/v1/credentials", json=enrollment_body(uuid.uuid4()), headers=headers(uuid.uuid4()),
    )
    assert response.status_code == 403


def test_enrolement_cle_vide_422(client):
    identity = uuid.uuid4()
    body = enrollment_body(identity)
    body["public_key"] = "  "
    response = client.post("/api/v1/credentials", json=body, headers=headers(identity))
    assert response.status_code == 422


# ============================================================
# POST /api/v1/credentials/{credential_id}/challenge
# ============================================================

def test_challenge_succes(client):
    with patch("messtrack.routers.credentials.credential_service.issue_challenge") as mock:
        mock.return_value = ChallengeResponse(credential_id="cred-1", challenge="abc", expires_in=120)
        response = client.post("/api/v1/credentials/cred-1/challenge", headers=headers(uuid.uuid4()))

    assert response.status_code == 200
    assert response.json()["expires_in"] == 120


def test_challenge_credential_inconnu_404(client):
    with patch("messtrack.routers.credentials.credential_service.issue_challenge") as mock:
        mock.return_value = reject(RejectReason.CREDENTIAL_NOT_FOUND)
        response = client.post("/api/v1/credentials/inconnu/challenge", headers=headers(uuid.uuid4()))

    assert response.status_code == 404


def test_challenge_credential_suspendu_403(client):
    with patch("messtrack.routers.credentials.credential_service.issue_challenge") as mock:
        mock.return_value = reject(RejectReason.CREDENTIAL_REVOKED, status="suspended")
        response = client.post("/api/v1/credentials/cred-1/challenge", headers=headers(uuid.uuid4()))

    assert response.status_code == 403


# ============================================================
# GET /api/v1/credentials/status/{identity_id}
# ============================================================

def test_statut_pour_soi_meme(client):
    identity = uuid.uuid4()
    with patch("messtrack.routers.credentials.credential_service.get_enrollment_status") as mock:
        mock.return_value = EnrollmentStatus(identity_id=identity, is_enrolled=False)
        response = client.get(f"/api/v1/credentials/status/{identity}", headers=headers(identity))

    assert response.status_code == 200
    assert response.json()["is_enrolled"] is False


def test_statut_d_autrui_refuse_a_un_abonne(client):
    response = client.get(f"/api/v1/credentials/status/{uuid.uuid4()}", headers=headers(uuid.uuid4()))
    assert response.status_code == 403


def test_statut_d_autrui_autorise_a_un_admin(client):
    identity = uuid.uuid4()
    with patch("messtrack.routers.credentials.credential_service.get_enrollment_status") as mock:
        mock.return_value = EnrollmentStatus(identity_id=identity, is_enrolled=True)
        response = client.get(
            f"/api/v1/credentials/status/{identity}", headers=headers(uuid.uuid4(), role="mess_admin"),
        )

    assert response.status_code == 200


# ============================================================
# POST /api/v1/credentials/revoke
# ============================================================

def test_revocation_par_admin(client):
    identity = uuid.uuid4()
    with patch("messtrack.routers.credentials.credential_service.revoke", return_value=1) as mock:
        response = client.post(
            "/api/v1/credentials/revoke",
            json={"identity_id": str(identity), "reason": "Téléphone perdu"},
            headers=headers(uuid.uuid4(), role="mess_admin"),
        )

    assert response.status_code == 200
    assert response.json()["revoked_count"] == 1
    assert mock.call_args.args[1] == identity


def test_revocation_idempotente(client):
    identity = uuid.uuid4()
    with patch("messtrack.routers.credentials.credential_service.revoke", return_value=0):
        response = client.post(
            "/api/v1/credentials/revoke", json={"identity_id": str(identity)}, headers=headers(identity),
        )

    assert response.status_code == 200
    assert response.json()["revoked_count"] == 0
