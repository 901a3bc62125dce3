"""Integration tests for admin API endpoints."""

from datetime import timedelta

import pytest

STRONG_PASSWORD = "Str0ng!Passw0rd"


class TestAccessControl:
    """Admin routes need the right role or permission."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/api/admin/health"),
            ("get", "/api/admin/audit/recent"),
            ("get", "/api/admin/alerts"),
            ("post", "/api/admin/monitors/run"),
            ("post", "/api/admin/security/assessment"),
            ("get", "/api/admin/retention/policies"),
            ("get", "/api/admin/retention/status"),
            ("get", "/api/admin/privacy/requests"),
        ],
    )
    def test_regular_user_forbidden(self, client, user_headers, method, path):
        response = getattr(client, method)(path, headers=user_headers)
        assert response.status_code == 403

    def test_anonymous_unauthorized(self, client):
        assert client.get("/api/admin/alerts").status_code == 401

    def test_lock_requires_users_permission(self, client, user_headers, admin_user):
        response = client.post(
            f"/api/admin/users/{admin_user['user_id']}/lock", headers=user_headers
        )
        assert response.status_code == 403


class TestHealthAndAudit:
    def test_health(self, client, admin_headers):
        response = client.get("/api/admin/health", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"] is True
        assert "scheduler" in data
        assert data["metrics"]["active_sessions"] >= 1
        assert data["metrics"]["pending_privacy_requests"] == 0

    def test_recent_events(self, client, admin_headers, test_user):
        response = client.get("/api/admin/audit/recent?limit=5", headers=admin_headers)

        assert response.status_code == 200
        events = response.json()
        assert 0 < len(events) <= 5
        assert "event_type" in events[0]

    def test_user_trail_is_audited(self, client, admin_headers, test_user, admin_user):
        response = client.get(
            f"/api/admin/audit/users/{test_user['user_id']}", headers=admin_headers
        )

        assert response.status_code == 200
        assert "user_registered" in {e["event_type"] for e in response.json()}

        trail = client.get(
            f"/api/admin/audit/users/{admin_user['user_id']}", headers=admin_headers
        ).json()
        access = [e for e in trail if e["event_type"] == "data_access"]
        assert access[0]["event_data"]["subject_user_id"] == test_user["user_id"]


class TestAlerts:
    @pytest.fixture
    def alert_id(self, security_system, db_session):
        alert = security_system.audit.create_security_alert(
            db_session, "manual_review", "warning", "Check this"
        )
        return alert.id

    def test_list_alerts(self, client, admin_headers, alert_id):
        response = client.get("/api/admin/alerts", headers=admin_headers)

        assert response.status_code == 200
        assert [a["id"] for a in response.json()] == [alert_id]

    def test_acknowledge_then_resolve(self, client, admin_headers, admin_user, alert_id):
        acked = client.post(f"/api/admin/alerts/{alert_id}/acknowledge", headers=admin_headers)
        assert acked.status_code == 200
        assert acked.json()["acknowledged_at"] is not None
        assert acked.json()["acknowledged_by"] == admin_user["user_id"]

        resolved = client.post(f"/api/admin/alerts/{alert_id}/resolve", headers=admin_headers)
        assert resolved.json()["resolved_at"] is not None
        assert resolved.json()["resolved_by"] == admin_user["user_id"]

    def test_unknown_alert(self, client, admin_headers):
        response = client.post("/api/admin/alerts/missing/acknowledge", headers=admin_headers)
        assert response.status_code == 404

    def test_run_monitors(self, client, admin_headers, security_system, db_session, test_settings):
        # Lockout stops login failures short of the alert threshold
        for _ in range(test_settings.ALERT_FAILED_LOGINS_PER_HOUR):
            security_system.audit.log_audit_event(
                db_session, "login_failed", identifier="victim@example.com", source="auth"
            )

        response = client.post("/api/admin/monitors/run", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"failed_logins": 1, "data_access": 0, "privacy_requests": 0}


class TestComplianceReports:
    def test_generate_and_fetch_latest(self, client, admin_headers, clock):
        body = {
            "period_start": (clock() - timedelta(days=1)).isoformat(),
            "period_end": (clock() + timedelta(days=1)).isoformat(),
        }
        created = client.post("/api/admin/compliance/reports", headers=admin_headers, json=body)

        assert created.status_code == 201
        assert created.json()["report_type"] == "on_demand"
        assert created.json()["metrics"]["total_users"] == 1

        latest = client.get("/api/admin/compliance/reports/latest", headers=admin_headers)
        assert latest.json()["id"] == created.json()["id"]

    def test_inverted_period_rejected(self, client, admin_headers, clock):
        body = {
            "period_start": clock().isoformat(),
            "period_end": (clock() - timedelta(days=1)).isoformat(),
        }
        response = client.post("/api/admin/compliance/reports", headers=admin_headers, json=body)
        assert response.status_code == 422

    def test_latest_missing(self, client, admin_headers):
        response = client.get(
            "/api/admin/compliance/reports/latest?report_type=weekly", headers=admin_headers
        )
        assert response.status_code == 404


class TestSecurityAssessment:
    def test_run_and_fetch_latest(self, client, admin_headers):
        missing = client.get("/api/admin/security/assessment/latest", headers=admin_headers)
        assert missing.status_code == 404

        created = client.post("/api/admin/security/assessment", headers=admin_headers)

        assert created.status_code == 201
        data = created.json()
        assert {c["check"] for c in data["checks"]} == {"password_age", "inactive_sessions"}
        assert "weak_password_hashing" in [v["id"] for v in data["vulnerabilities"]]
        assert data["overall_status"] == "fail"
        assert "Regularly update dependencies" in data["recommendations"]

        latest = client.get("/api/admin/security/assessment/latest", headers=admin_headers)
        assert latest.json()["id"] == data["id"]


class TestRetention:
    def test_list_policies(self, client, admin_headers):
        response = client.get("/api/admin/retention/policies", headers=admin_headers)

        assert response.status_code == 200
        assert [p["data_type"] for p in response.json()] == [
            "assessment_sessions",
            "audit_logs",
            "user_analytics",
            "user_sessions",
        ]

    def test_update_policy(self, client, admin_headers):
        response = client.patch(
            "/api/admin/retention/policies/user_analytics",
            headers=admin_headers,
            json={"retention_period_days": 400, "deletion_method": "hard_delete"},
        )

        assert response.status_code == 200
        assert response.json()["retention_period_days"] == 400
        assert response.json()["deletion_method"] == "hard_delete"

    def test_update_rejects_non_positive_period(self, client, admin_headers):
        response = client.patch(
            "/api/admin/retention/policies/user_analytics",
            headers=admin_headers,
            json={"retention_period_days": 0},
        )
        assert response.status_code == 422

    def test_unknown_policy(self, client, admin_headers):
        response = client.patch(
            "/api/admin/retention/policies/cat_pictures",
            headers=admin_headers,
            json={"retention_period_days": 10},
        )
        assert response.status_code == 404

    def test_delete_unused_policy(self, client, admin_headers):
        response = client.delete(
            "/api/admin/retention/policies/user_analytics", headers=admin_headers
        )
        assert response.status_code == 204

        remaining = client.get("/api/admin/retention/policies", headers=admin_headers).json()
        assert "user_analytics" not in [p["data_type"] for p in remaining]

    def test_delete_policy_in_use(self, client, admin_headers):
        client.post("/api/admin/retention/user_analytics/run", headers=admin_headers)

        response = client.delete(
            "/api/admin/retention/policies/user_analytics", headers=admin_headers
        )
        assert response.status_code == 409

    def test_manual_run(self, client, admin_headers):
        response = client.post("/api/admin/retention/user_sessions/run", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["trigger"] == "manual"
        assert response.json()["status"] == "completed"

    def test_run_all_then_report(self, client, admin_headers):
        jobs = client.post("/api/admin/retention/run", headers=admin_headers).json()
        assert len(jobs) == 4

        status = client.get("/api/admin/retention/status", headers=admin_headers).json()
        assert status["job_counts"] == {"completed": 4}

        report = client.post("/api/admin/retention/report", headers=admin_headers)
        assert report.status_code == 201
        assert report.json()["compliance_status"] == "compliant"

        latest = client.get("/api/admin/retention/report/latest", headers=admin_headers)
        assert latest.json()["id"] == report.json()["id"]

    def test_latest_report_missing(self, client, admin_headers):
        response = client.get("/api/admin/retention/report/latest", headers=admin_headers)
        assert response.status_code == 404


class TestPrivacyQueue:
    def test_list_and_process(self, client, admin_headers, user_headers):
        request_id = client.post(
            "/api/privacy/requests", headers=user_headers, json={"request_type": "objection"}
        ).json()["request_id"]

        queue = client.get("/api/admin/privacy/requests", headers=admin_headers).json()
        assert request_id in [item["id"] for item in queue]

        processed = client.post(
            f"/api/admin/privacy/requests/{request_id}/process", headers=admin_headers
        )
        assert processed.status_code == 200
        assert processed.json()["status"] == "completed"

        again = client.post(
            f"/api/admin/privacy/requests/{request_id}/process", headers=admin_headers
        )
        assert again.status_code == 400


class TestAccountLocking:
    def test_lock_and_unlock(self, client, admin_headers, test_user, user_headers):
        user_id = test_user["user_id"]

        locked = client.post(f"/api/admin/users/{user_id}/lock", headers=admin_headers)
        assert locked.status_code == 200
        assert locked.json()["data"]["account_locked"] is True

        assert client.get("/api/auth/me", headers=user_headers).status_code == 401
        login = client.post(
            "/api/auth/login",
            json={"email": "user@example.com", "password": STRONG_PASSWORD},
        )
        assert login.status_code == 401

        unlocked = client.post(f"/api/admin/users/{user_id}/unlock", headers=admin_headers)
        assert unlocked.json()["data"]["account_locked"] is False
        login = client.post(
            "/api/auth/login",
            json={"email": "user@example.com", "password": STRONG_PASSWORD},
        )
        assert login.status_code == 200

    def test_lock_unknown_user(self, client, admin_headers):
        response = client.post("/api/admin/users/missing/lock", headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["success"] is False
