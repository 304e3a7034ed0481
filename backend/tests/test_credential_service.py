"""
Tests du registre des authentificateurs sur base SQLite réelle.
Couverture : enroll, revoke, get_enrollment_status, issue_challenge, verify_assertion
(compteur strictement croissant, suspension sur rejeu, course entre deux assertions).
"""

import threading
import uuid
from datetime import datetime, timezone

import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from sqlalchemy.exc import IntegrityError

from messtrack.schemas.common import RejectReason, Rejection
from messtrack.services import credential_service

NOW = datetime(2026, 3, 10, 7, 30, tzinfo=timezone.utc)


def challenge_for(db, cache, credential):
    return credential_service.issue_challenge(db, cache, credential.credential_id).challenge


def reload(db, credential_id):
    db.expire_all()
    return credential_service.get_by_credential_id(db, credential_id)


# ----------------------------------------------------------------
# enroll / revoke / status
# ----------------------------------------------------------------

class TestEnroll:
    def test_enrolement_initialise_le_compteur(self, db_session, key_pair):
        identity = uuid.uuid4()
        result = credential_service.enroll(db_session, identity, "cred-1", key_pair[1], {"model": "Pixel 8"})
        assert not isinstance(result, Rejection)
        assert result.status == "active"
        assert result.sign_count == 0
        assert result.device_info == {"model": "Pixel 8"}

    def test_second_enrolement_refuse(self, db_session, key_pair, make_credential):
        identity = uuid.uuid4()
        make_credential(identity)
        result = credential_service.enroll(db_session, identity, "cred-2", key_pair[1])
        assert result.reason == RejectReason.ALREADY_ENROLLED

    def test_enrolement_refuse_si_credential_suspendu(self, db_session, key_pair, make_credential):
        identity = uuid.uuid4()
        make_credential(identity, status="suspended")
        result = credential_service.enroll(db_session, identity, "cred-2", key_pair[1])
        assert result.reason == RejectReason.ALREADY_ENROLLED
        assert result.detail["status"] == "suspended"

    def test_credential_id_deja_utilise_refuse(self, db_session, key_pair, make_credential):
        make_credential(uuid.uuid4(), credential_id="cred-partage")
        result = credential_service.enroll(db_session, uuid.uuid4(), "cred-partage", key_pair[1])
        assert result.reason == RejectReason.ALREADY_ENROLLED

    def test_cle_publique_illisible_refusee(self, db_session):
        result = credential_service.enroll(db_session, uuid.uuid4(), "cred-1", "-----BEGIN PUBLIC KEY-----\nxx")
        assert result.reason == RejectReason.MALFORMED_PAYLOAD

    def test_enrolement_apres_revocation(self, db_session, key_pair, make_credential):
        identity = uuid.uuid4()
        make_credential(identity)
        assert credential_service.revoke(db_session, identity) == 1
        result = credential_service.enroll(db_session, identity, "cred-neuf", key_pair[1])
        assert not isinstance(result, Rejection)


class TestRevoke:
    def test_revocation_idempotente(self, db_session, make_credential):
        identity = uuid.uuid4()
        make_credential(identity)
        assert credential_service.revoke(db_session, identity, reason="Téléphone perdu") == 1
        assert credential_service.revoke(db_session, identity) == 0

    def test_revocation_conserve_la_ligne(self, db_session, make_credential):
        identity = uuid.uuid4()
        credential = make_credential(identity)
        credential_service.revoke(db_session, identity, reason="Téléphone perdu")
        row = reload(db_session, credential.credential_id)
        assert row.status == "revoked"
        assert row.revoked_reason == "Téléphone perdu"

    def test_revocation_d_un_credential_suspendu(self, db_session, make_credential):
        identity = uuid.uuid4()
        make_credential(identity, status="suspended")
        assert credential_service.revoke(db_session, identity) == 1

    def test_statut_sans_credential(self, db_session):
        status = credential_service.get_enrollment_status(db_session, uuid.uuid4())
        assert status.is_enrolled is False
        assert status.credential is None

    def test_statut_suspendu_non_enrole(self, db_session, make_credential):
        identity = uuid.uuid4()
        make_credential(identity, status="suspended")
        status = credential_service.get_enrollment_status(db_session, identity)
        assert status.is_enrolled is False
        assert status.credential.status == "suspended"


# ----------------------------------------------------------------
# issue_challenge / verify_assertion
# ----------------------------------------------------------------

class TestVerifyAssertion:
    def test_assertion_valide_avance_le_compteur(self, db_session, cache, make_credential, make_assertion):
        identity = uuid.uuid4()
        credential = make_credential(identity, sign_count=4)
        assertion = make_assertion(credential.credential_id, uuid.uuid4(), challenge_for(db_session, cache, credential), 5)

        result = credential_service.verify_assertion(db_session, cache, assertion, expected_identity=identity, now=NOW)

        assert not isinstance(result, Rejection)
        assert result.sign_count == 5
        assert result.usage_count == 1

    def test_credential_inconnu(self, db_session, cache, make_assertion):
        assertion = make_assertion("inconnu", uuid.uuid4(), "AAAA", 1)
        result = credential_service.verify_assertion(db_session, cache, assertion)
        assert result.reason == RejectReason.CREDENTIAL_NOT_FOUND

    def test_credential_revoque(self, db_session, cache, make_credential, make_assertion):
        credential = make_credential(uuid.uuid4(), status="revoked")
        assertion = make_assertion(credential.credential_id, uuid.uuid4(), "AAAA", 1)
        result = credential_service.verify_assertion(db_session, cache, assertion)
        assert result.reason == RejectReason.CREDENTIAL_REVOKED

    def test_autre_identite_refusee(self, db_session, cache, make_credential, make_assertion):
        credential = make_credential(uuid.uuid4())
        assertion = make_assertion(credential.credential_id, uuid.uuid4(), challenge_for(db_session, cache, credential), 1)
        result = credential_service.verify_assertion(db_session, cache, assertion, expected_identity=uuid.uuid4())
        assert result.reason == RejectReason.INVALID_ASSERTION

    def test_challenge_non_delivre_refuse(self, db_session, cache, make_credential, make_assertion):
        credential = make_credential(uuid.uuid4())
        forged = credential_service.b64url_encode(b"x" * 32)
        assertion = make_assertion(credential.credential_id, uuid.uuid4(), forged, 1)
        result = credential_service.verify_assertion(db_session, cache, assertion)
        assert result.reason == RejectReason.INVALID_ASSERTION

    def test_signature_d_une_autre_cle_refusee(self, db_session, cache, make_credential, make_assertion):
        credential = make_credential(uuid.uuid4())
        intruder = ec.generate_private_key(ec.SECP256R1())
        assertion = make_assertion(
            credential.credential_id, uuid.uuid4(), challenge_for(db_session, cache, credential), 1,
            private_key=intruder,
        )
        result = credential_service.verify_assertion(db_session, cache, assertion)
        assert result.reason == RejectReason.INVALID_ASSERTION
        assert reload(db_session, credential.credential_id).sign_count == 0

    def test_contexte_client_modifie_refuse(self, db_session, cache, make_credential, make_assertion):
        credential = make_credential(uuid.uuid4())
        assertion = make_assertion(credential.credential_id, uuid.uuid4(), challenge_for(db_session, cache, credential), 1)
        tampered = assertion.model_copy(update={"client_context": {"origin": "https://evil.example"}})
        result = credential_service.verify_assertion(db_session, cache, tampered)
        assert result.reason == RejectReason.INVALID_ASSERTION

    def test_challenge_a_usage_unique(self, db_session, cache, make_credential, make_assertion):
        credential = make_credential(uuid.uuid4())
        challenge = challenge_for(db_session, cache, credential)
        first = make_assertion(credential.credential_id, uuid.uuid4(), challenge, 1)
        second = make_assertion(credential.credential_id, uuid.uuid4(), challenge, 2)

        assert not isinstance(credential_service.verify_assertion(db_session, cache, first), Rejection)
        assert credential_service.verify_assertion(db_session, cache, second).reason == RejectReason.INVALID_ASSERTION

    def test_compteur_rejoue_suspend_le_credential(self, db_session, cache, make_credential, make_assertion):
        credential = make_credential(uuid.uuid4(), sign_count=5)
        assertion = make_assertion(credential.credential_id, uuid.uuid4(), challenge_for(db_session, cache, credential), 5)

        result = credential_service.verify_assertion(db_session, cache, assertion, now=NOW)

        assert result.reason == RejectReason.REPLAY_DETECTED
        assert result.detail["counter"] == 5
        row = reload(db_session, credential.credential_id)
        assert row.status == "suspended"
        assert row.sign_count == 5

    def test_credential_suspendu_ne_recoit_plus_de_challenge(self, db_session, cache, make_credential):
        credential = make_credential(uuid.uuid4(), status="suspended")
        result = credential_service.issue_challenge(db_session, cache, credential.credential_id)
        assert result.reason == RejectReason.CREDENTIAL_REVOKED

    def test_compteurs_successifs(self, db_session, cache, make_credential, make_assertion):
        credential = make_credential(uuid.uuid4())
        for counter in (1, 2, 10):
            assertion = make_assertion(
                credential.credential_id, uuid.uuid4(), challenge_for(db_session, cache, credential), counter,
            )
            result = credential_service.verify_assertion(db_session, cache, assertion)
            assert result.sign_count == counter

    def test_compteur_au_dela_de_2_31(self, db_session, cache, make_credential, make_assertion):
        """Compteur uint32 de l'authentificateur : la colonne ne doit pas déborder en 32 bits signés."""
        credential = make_credential(uuid.uuid4())
        for counter in (2 ** 31, 2 ** 32 - 1):
            assertion = make_assertion(
                credential.credential_id, uuid.uuid4(), challenge_for(db_session, cache, credential), counter,
            )
            result = credential_service.verify_assertion(db_session, cache, assertion)
            assert not isinstance(result, Rejection)
            assert result.sign_count == counter
        assert reload(db_session, credential.credential_id).sign_count == 2 ** 32 - 1

    def test_deux_assertions_concurrentes_meme_compteur(
        self, db_session, session_factory, cache, make_credential, make_assertion,
    ):
        """Le compare-and-set laisse passer une seule des deux assertions de compteur 1."""
        credential = make_credential(uuid.uuid4())
        assertions = [
            make_assertion(credential.credential_id, uuid.uuid4(), challenge_for(db_session, cache, credential), 1)
            for _ in range(2)
        ]
        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def worker(assertion):
            db = session_factory()
            try:
                barrier.wait()
                outcome = credential_service.verify_assertion(db, cache, assertion, now=NOW)
                with lock:
                    results.append(outcome)
            finally:
                db.close()

        threads = [threading.Thread(target=worker, args=(a,)) for a in assertions]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        accepted = [r for r in results if not isinstance(r, Rejection)]
        rejected = [r for r in results if isinstance(r, Rejection)]
        assert len(accepted) == 1
        assert len(rejected) == 1
        assert rejected[0].reason == RejectReason.REPLAY_DETECTED
        assert reload(db_session, credential.credential_id).sign_count == 1


def test_index_partiel_interdit_deux_credentials_actifs(db_session, make_credential):
    identity = uuid.uuid4()
    make_credential(identity, status="revoked")
    make_credential(identity)
    with pytest.raises(IntegrityError):
        make_credential(identity)
    db_session.rollback()
