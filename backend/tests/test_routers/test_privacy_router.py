"""Integration tests for privacy API endpoints."""


class TestPrivacyRequests:
    """Test cases for /api/privacy/requests."""

    def test_file_request(self, client, user_headers):
        """Filing returns 202 with the pending request id."""
        response = client.post(
            "/api/privacy/requests",
            headers=user_headers,
            json={"request_type": "objection", "request_data": {"reason": "marketing"}},
        )

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "pending"
        assert data["request_id"]

    def test_access_request_is_dispatched(
        self, client, user_headers, security_system, scheduler_enabled
    ):
        response = client.post(
            "/api/privacy/requests", headers=user_headers, json={"request_type": "access"}
        )

        request_id = response.json()["request_id"]
        assert security_system.scheduler.has_task(f"privacy.access.{request_id}")

    def test_access_request_without_scheduler_completes(self, client, user_headers):
        request_id = client.post(
            "/api/privacy/requests", headers=user_headers, json={"request_type": "access"}
        ).json()["request_id"]

        response = client.get(f"/api/privacy/requests/{request_id}", headers=user_headers)
        assert response.json()["status"] == "completed"

    def test_unknown_request_type(self, client, user_headers):
        response = client.post(
            "/api/privacy/requests", headers=user_headers, json={"request_type": "telepathy"}
        )

        assert response.status_code == 422
        assert "telepathy" in response.json()["detail"]

    def test_requires_authentication(self, client):
        response = client.post("/api/privacy/requests", json={"request_type": "access"})
        assert response.status_code == 401

    def test_list_and_get_own_requests(self, client, user_headers):
        created = client.post(
            "/api/privacy/requests", headers=user_headers, json={"request_type": "restriction"}
        ).json()

        listing = client.get("/api/privacy/requests", headers=user_headers)
        assert listing.status_code == 200
        assert [item["id"] for item in listing.json()] == [created["request_id"]]

        single = client.get(f"/api/privacy/requests/{created['request_id']}", headers=user_headers)
        assert single.status_code == 200
        assert single.json()["request_type"] == "restriction"
        assert single.json()["status"] == "pending"

    def test_other_users_request_is_not_found(self, client, user_headers, admin_headers):
        """A request filed by someone else looks like it does not exist."""
        created = client.post(
            "/api/privacy/requests", headers=admin_headers, json={"request_type": "objection"}
        ).json()

        response = client.get(
            f"/api/privacy/requests/{created['request_id']}", headers=user_headers
        )
        assert response.status_code == 404

    def test_rights_still_available_when_restricted(self, client, user_headers):
        client.delete("/api/privacy/consent/data_processing", headers=user_headers)

        response = client.post(
            "/api/privacy/requests", headers=user_headers, json={"request_type": "erasure"}
        )
        assert response.status_code == 202


class TestConsent:
    """Test cases for /api/privacy/consent."""

    def test_consent_status(self, client, user_headers):
        response = client.get("/api/privacy/consent", headers=user_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["consents"]["data_processing"]["given"] is True
        assert data["consents"]["data_processing"]["valid"] is True
        assert data["consents"]["marketing"]["given"] is False
        assert data["processing_restricted"] is False
        assert data["regional_compliance"] is True

    def test_grant_consent(self, client, user_headers):
        response = client.post(
            "/api/privacy/consent",
            headers=user_headers,
            json={"consent_type": "analytics", "consent_given": True, "consent_version": "2.0"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "consent_type": "analytics",
            "consent_given": True,
            "consent_version": "2.0",
        }

    def test_withdraw_consent_restricts_processing(self, client, user_headers):
        response = client.delete("/api/privacy/consent/data_processing", headers=user_headers)

        assert response.status_code == 200
        assert response.json()["consent_given"] is False
        assert response.json()["withdrawal_date"] is not None

        status = client.get("/api/privacy/consent", headers=user_headers).json()
        assert status["processing_restricted"] is True
        assert status["regional_compliance"] is False

    def test_regrant_lifts_restriction(self, client, user_headers):
        client.delete("/api/privacy/consent/data_processing", headers=user_headers)
        client.post(
            "/api/privacy/consent",
            headers=user_headers,
            json={"consent_type": "data_processing", "consent_given": True},
        )

        status = client.get("/api/privacy/consent", headers=user_headers).json()
        assert status["processing_restricted"] is False

    def test_withdraw_via_post(self, client, user_headers):
        response = client.post(
            "/api/privacy/consent",
            headers=user_headers,
            json={"consent_type": "marketing", "consent_given": False},
        )
        assert response.json()["consent_given"] is False

    def test_unknown_consent_type(self, client, user_headers):
        response = client.delete("/api/privacy/consent/telepathy", headers=user_headers)
        assert response.status_code == 422

    def test_consent_history(self, client, user_headers):
        client.delete("/api/privacy/consent/data_processing", headers=user_headers)

        response = client.get("/api/privacy/consent/history", headers=user_headers)
        assert response.status_code == 200
        actions = {(entry["consent_type"], entry["action"]) for entry in response.json()}
        assert ("data_processing", "granted") in actions
        assert ("data_processing", "withdrawn") in actions


class TestSessionsAndRegions:
    def test_session_summary(self, client, user_headers):
        response = client.get("/api/privacy/sessions", headers=user_headers)

        assert response.status_code == 200
        assert response.json()["total_sessions"] == 1
        assert response.json()["active_sessions"] == 1

    def test_regional_requirements_public(self, client):
        response = client.get("/api/privacy/regions/us-ca")

        assert response.status_code == 200
        data = response.json()
        assert data["regime"] == "ccpa"
        assert data["right_to_delete"] is True
        assert data["data_retention_max_days"] == 365

    def test_unknown_region_falls_back(self, client):
        response = client.get("/api/privacy/regions/atlantis")
        assert response.json()["region"] == "EU"
        assert response.json()["regime"] == "gdpr"
