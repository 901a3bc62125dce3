"""Integration tests for data subject requests end to end."""

from repositories.db_models import ConsentRecord, UserProfile
from repositories.user_repository import UserRepository
from services.privacy_request_service import GENERIC_REJECTION

STRONG_PASSWORD = "Str0ng!Passw0rd"


def _file(client, headers, request_type):
    response = client.post(
        "/api/privacy/requests", headers=headers, json={"request_type": request_type}
    )
    assert response.status_code == 202
    return response.json()["request_id"]


def _process(client, admin_headers, request_id):
    return client.post(f"/api/admin/privacy/requests/{request_id}/process", headers=admin_headers)


class TestAccessFlow:
    def test_background_access_export(
        self, client, user_headers, security_system, scheduler_enabled
    ):
        request_id = _file(client, user_headers, "access")

        security_system._fulfil_access_request(request_id)

        response = client.get(f"/api/privacy/requests/{request_id}", headers=user_headers)
        data = response.json()
        assert data["status"] == "completed"
        assert data["response_data"]["profile"]["email"] == "user@example.com"
        assert data["response_data"]["sessions"]["total_sessions"] == 1


class TestErasureFlow:
    """Erasure removes the account in one transaction or not at all."""

    def test_full_erasure(self, client, user_headers, admin_headers, test_user, db_session):
        user_id = test_user["user_id"]
        request_id = _file(client, user_headers, "erasure")

        response = _process(client, admin_headers, request_id)
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["response_data"]["deleted"]["user_profiles"] == 1
        assert data["response_data"]["deleted"]["user_sessions"] == 1

        # The token died with the account
        assert client.get("/api/privacy/consent", headers=user_headers).status_code == 401
        login = client.post(
            "/api/auth/login", json={"email": "user@example.com", "password": STRONG_PASSWORD}
        )
        assert login.status_code == 401

        db_session.expire_all()
        assert db_session.get(UserProfile, user_id) is None
        assert db_session.query(ConsentRecord).filter_by(user_id=user_id).count() == 0

        # The request stays as evidence, detached from the user
        completed = client.get(
            "/api/admin/privacy/requests?status=completed", headers=admin_headers
        ).json()
        assert request_id in [item["id"] for item in completed]

    def test_failure_rolls_back_everything(
        self, client, user_headers, admin_headers, test_user, db_session, monkeypatch
    ):
        def broken(self, user_id):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(UserRepository, "delete_profile", broken)
        request_id = _file(client, user_headers, "erasure")

        response = _process(client, admin_headers, request_id)
        assert response.status_code == 200
        assert response.json()["status"] == "rejected"
        assert response.json()["rejection_reason"] == GENERIC_REJECTION

        db_session.expire_all()
        assert db_session.get(UserProfile, test_user["user_id"]) is not None
        assert (
            db_session.query(ConsentRecord).filter_by(user_id=test_user["user_id"]).count() == 1
        )
        assert client.get("/api/privacy/consent", headers=user_headers).status_code == 200

    def test_legal_hold_blocks_erasure(
        self, client, user_headers, admin_headers, test_user, db_session
    ):
        from repositories.db_models import LegalObligation

        db_session.add(LegalObligation(user_id=test_user["user_id"], obligation_type="legal_hold"))
        db_session.commit()
        request_id = _file(client, user_headers, "erasure")

        data = _process(client, admin_headers, request_id).json()
        assert data["status"] == "rejected"
        assert "legal obligation" in data["rejection_reason"]


class TestRestrictionFlow:
    def test_restriction_request_blocks_processing(
        self, client, user_headers, admin_headers
    ):
        request_id = _file(client, user_headers, "restriction")
        assert _process(client, admin_headers, request_id).json()["status"] == "completed"

        assert client.get("/api/auth/me", headers=user_headers).status_code == 403
        # Rights remain available
        assert client.get("/api/privacy/consent", headers=user_headers).status_code == 200
