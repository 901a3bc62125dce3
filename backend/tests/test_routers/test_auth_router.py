"""Integration tests for auth API endpoints."""

from models.notification_types import NotificationType

STRONG_PASSWORD = "Str0ng!Passw0rd"


def _register(client, **overrides):
    payload = {
        "email": "newuser@example.com",
        "password": STRONG_PASSWORD,
        "first_name": "New",
        "consents": {"data_processing": True, "marketing": False},
    }
    payload.update(overrides)
    return client.post("/api/auth/register", json=payload)


class TestRegister:
    """Test cases for /api/auth/register."""

    def test_register_new_user(self, client):
        """New user is registered and logged in."""
        response = _register(client)

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["email"] == "newuser@example.com"
        assert body["data"]["token_type"] == "bearer"
        assert body["data"]["access_token"]

    def test_register_requires_data_processing_consent(self, client):
        """Registration fails without consent in a consent-required region."""
        response = _register(client, consents={"data_processing": False})

        assert response.status_code == 422
        assert response.json() == {
            "success": False,
            "error": "Data processing consent is required",
        }

    def test_register_duplicate_email(self, client, test_user):
        response = _register(client, email="USER@example.com")

        assert response.status_code == 409
        assert response.json()["error"] == "Email already registered"

    def test_register_weak_password_lists_rules(self, client):
        response = _register(client, password="short")

        assert response.status_code == 422
        assert len(response.json()["details"]) >= 3

    def test_register_missing_fields(self, client):
        response = client.post("/api/auth/register", json={"email": "x@example.com"})
        assert response.status_code == 422


class TestLogin:
    """Test cases for /api/auth/login."""

    def test_login_success(self, client, test_user):
        response = client.post(
            "/api/auth/login",
            json={"email": "user@example.com", "password": STRONG_PASSWORD},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user_id"] == test_user["user_id"]
        assert data["expires_in"] > 0

    def test_login_failures_are_generic(self, client, test_user):
        """Unknown email and wrong password get the same answer."""
        wrong = client.post(
            "/api/auth/login",
            json={"email": "user@example.com", "password": "Wrong!Passw0rd"},
        )
        unknown = client.post(
            "/api/auth/login",
            json={"email": "ghost@example.com", "password": STRONG_PASSWORD},
        )

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json() == {"success": False, "error": "Invalid credentials"}

    def test_login_rate_limited(self, client, test_user):
        statuses = [
            client.post(
                "/api/auth/login",
                json={"email": f"ghost{i}@example.com", "password": "Wrong!Passw0rd"},
            ).status_code
            for i in range(11)
        ]
        assert statuses[-1] == 429


class TestAuthenticatedRoutes:
    def test_me(self, client, user_headers):
        response = client.get("/api/auth/me", headers=user_headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["email"] == "user@example.com"
        assert "profile:read" in data["permissions"]

    def test_me_requires_token(self, client):
        response = client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert "correlation_id" in response.json()

    def test_me_with_invalid_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_me_blocked_when_processing_restricted(self, client, user_headers):
        client.delete("/api/privacy/consent/data_processing", headers=user_headers)

        response = client.get("/api/auth/me", headers=user_headers)
        assert response.status_code == 403

    def test_logout_revokes_token(self, client, user_headers):
        response = client.post("/api/auth/logout", headers=user_headers)
        assert response.json()["data"] == {"logged_out": True}

        assert client.get("/api/auth/me", headers=user_headers).status_code == 401

    def test_logout_all(self, client, user_headers):
        client.post(
            "/api/auth/login",
            json={"email": "user@example.com", "password": STRONG_PASSWORD},
        )
        response = client.post("/api/auth/logout-all", headers=user_headers)
        assert response.json()["data"]["revoked_sessions"] == 2

    def test_change_password(self, client, user_headers):
        response = client.post(
            "/api/auth/change-password",
            headers=user_headers,
            json={"current_password": STRONG_PASSWORD, "new_password": "N3w!Password99"},
        )

        assert response.status_code == 200
        assert client.get("/api/auth/me", headers=user_headers).status_code == 401
        login = client.post(
            "/api/auth/login",
            json={"email": "user@example.com", "password": "N3w!Password99"},
        )
        assert login.status_code == 200

    def test_change_password_wrong_current(self, client, user_headers):
        response = client.post(
            "/api/auth/change-password",
            headers=user_headers,
            json={"current_password": "Wrong!Passw0rd", "new_password": "N3w!Password99"},
        )
        assert response.status_code == 401


class TestPasswordReset:
    def test_reset_flow(self, client, test_user, notifier):
        response = client.post("/api/auth/password-reset/request", json={"email": "user@example.com"})
        assert response.status_code == 200

        token = notifier.of_type(NotificationType.PASSWORD_RESET)[0]["data"]["token"]
        response = client.post(
            "/api/auth/password-reset/confirm",
            json={"token": token, "new_password": "N3w!Password99"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["revoked_sessions"] == 1

    def test_reset_request_for_unknown_email_looks_successful(self, client):
        response = client.post("/api/auth/password-reset/request", json={"email": "ghost@example.com"})
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_reset_confirm_with_bad_token(self, client):
        response = client.post(
            "/api/auth/password-reset/confirm",
            json={"token": "bogus", "new_password": "N3w!Password99"},
        )
        assert response.status_code == 422


class TestEmailVerification:
    def test_verify_email(self, client, security_system, notifier, monkeypatch):
        monkeypatch.setattr(security_system.auth.settings, "REQUIRE_EMAIL_VERIFICATION", True)
        registered = _register(client)
        assert registered.json()["data"]["verification_required"] is True

        token = notifier.of_type(NotificationType.EMAIL_VERIFICATION)[0]["data"]["token"]
        response = client.post("/api/auth/verify-email", json={"token": token})
        assert response.status_code == 200

        login = client.post(
            "/api/auth/login",
            json={"email": "newuser@example.com", "password": STRONG_PASSWORD},
        )
        assert login.status_code == 200

    def test_resend_verification(self, client):
        response = client.post("/api/auth/resend-verification", json={"email": "ghost@example.com"})
        assert response.status_code == 200
