"""
Pytest tests for the progress report endpoints.

Tests verify the HTTP mapping of authorization decisions:
- 401 for unauthenticated mutations, 403 for insufficient privilege
- 404 for drafts hidden from guests and unauthenticated actors
- 422 for invalid payloads, only once authorization has passed
- last-modified-user-id stamping on create and update
"""

import pytest

from tracker.models import UpdateProgressReportRequest


def report_payload(indicator_id, due_date_id, **overrides):
    attrs = {
        "indicator_id": indicator_id,
        "due_date_id": due_date_id,
        "title": "test title",
        "description": "test desc",
        "document_url": "test_url",
        "document_public": True,
    }
    attrs.update(overrides)
    return {"progress_report": attrs}


class TestIndex:
    """GET /progress_reports hides drafts from guests and unauthenticated actors."""

    @pytest.fixture(autouse=True)
    def _reports(self, progress_report, draft_progress_report):
        self.published = progress_report
        self.draft = draft_progress_report

    def test_not_signed_in_sees_published_only(self, client):
        response = client.get("/progress_reports")

        assert response.status_code == 200
        data = response.json()["data"]
        assert [item["id"] for item in data] == [str(self.published.id)]

    def test_guest_will_not_see_drafts(self, client, guest, auth_headers):
        response = client.get("/progress_reports", headers=auth_headers(guest))

        assert len(response.json()["data"]) == 1

    def test_contributor_sees_drafts(self, client, contributor, auth_headers):
        response = client.get("/progress_reports", headers=auth_headers(contributor))

        assert len(response.json()["data"]) == 2

    def test_manager_sees_drafts(self, client, manager, auth_headers):
        response = client.get("/progress_reports", headers=auth_headers(manager))

        assert len(response.json()["data"]) == 2

    def test_filter_by_indicator(self, client, manager, auth_headers, contributor_progress_report):
        response = client.get(
            "/progress_reports",
            params={"indicator_id": contributor_progress_report.indicator_id},
            headers=auth_headers(manager),
        )

        data = response.json()["data"]
        assert [item["id"] for item in data] == [str(contributor_progress_report.id)]


class TestShow:
    """GET /progress_reports/{id}"""

    def test_not_signed_in_shows_published(self, client, progress_report):
        response = client.get(f"/progress_reports/{progress_report.id}")

        assert response.status_code == 200
        data = response.json()["data"]
        assert int(data["id"]) == progress_report.id
        assert data["type"] == "progress-reports"
        assert data["attributes"]["title"] == "Published report"

    def test_not_signed_in_draft_is_not_found(self, client, draft_progress_report):
        response = client.get(f"/progress_reports/{draft_progress_report.id}")

        assert response.status_code == 404

    def test_guest_draft_is_not_found(self, client, guest, auth_headers, draft_progress_report):
        response = client.get(
            f"/progress_reports/{draft_progress_report.id}", headers=auth_headers(guest)
        )

        assert response.status_code == 404

    def test_contributor_sees_draft(self, client, contributor, auth_headers, draft_progress_report):
        response = client.get(
            f"/progress_reports/{draft_progress_report.id}", headers=auth_headers(contributor)
        )

        assert response.status_code == 200
        assert response.json()["data"]["attributes"]["draft"] is True

    def test_missing_report(self, client, manager, auth_headers):
        response = client.get("/progress_reports/999", headers=auth_headers(manager))

        assert response.status_code == 404
        assert "not found" in response.json()["detail"].lower()

    def test_id_beyond_integer_range(self, client, manager, auth_headers):
        response = client.get(f"/progress_reports/{2 ** 70}", headers=auth_headers(manager))

        assert response.status_code == 404


class TestCreate:
    """POST /progress_reports"""

    def test_not_signed_in_is_unauthorized(self, client):
        response = client.post(
            "/progress_reports",
            json={"progress_report": {"title": "test", "description": "test", "target_date": "today"}},
        )

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_guest_is_forbidden(self, client, guest, auth_headers, indicator, due_date):
        response = client.post(
            "/progress_reports",
            json=report_payload(indicator.id, due_date.id),
            headers=auth_headers(guest),
        )

        assert response.status_code == 403

    def test_contributor_not_managing_indicator_is_forbidden(
        self, client, contributor, auth_headers, indicator, due_date
    ):
        response = client.post(
            "/progress_reports",
            json=report_payload(indicator.id, due_date.id),
            headers=auth_headers(contributor),
        )

        assert response.status_code == 403

    def test_contributor_managing_indicator_can_create(
        self, client, contributor, auth_headers, contributor_indicator, contributor_due_date
    ):
        response = client.post(
            "/progress_reports",
            json=report_payload(contributor_indicator.id, contributor_due_date.id),
            headers=auth_headers(contributor),
        )

        assert response.status_code == 201
        attributes = response.json()["data"]["attributes"]
        assert attributes["indicator-id"] == contributor_indicator.id
        assert attributes["last-modified-user-id"] == contributor.id

    def test_manager_can_create(self, client, manager, auth_headers, indicator, due_date):
        response = client.post(
            "/progress_reports",
            json=report_payload(indicator.id, due_date.id),
            headers=auth_headers(manager),
        )

        assert response.status_code == 201

    def test_records_which_manager_created(self, client, manager, auth_headers, indicator, due_date):
        response = client.post(
            "/progress_reports",
            json=report_payload(indicator.id, due_date.id),
            headers=auth_headers(manager),
        )

        attributes = response.json()["data"]["attributes"]
        assert int(attributes["last-modified-user-id"]) == manager.id
        assert attributes["document-public"] is True
        assert attributes["draft"] is False

    def test_incorrect_params_are_unprocessable(self, client, manager, auth_headers):
        response = client.post(
            "/progress_reports",
            json={"progress_report": {"description": "desc only"}},
            headers=auth_headers(manager),
        )

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert "title" in detail
        assert "indicator" in detail

    def test_missing_title_is_unprocessable(self, client, manager, auth_headers, indicator, due_date):
        response = client.post(
            "/progress_reports",
            json=report_payload(indicator.id, due_date.id, title=None),
            headers=auth_headers(manager),
        )

        assert response.status_code == 422
        assert response.json()["detail"]["title"] == ["can't be blank"]

    def test_denial_takes_precedence_over_validation(self, client, contributor, auth_headers):
        response = client.post(
            "/progress_reports",
            json={"progress_report": {"description": "desc only"}},
            headers=auth_headers(contributor),
        )

        assert response.status_code == 403

    def test_contributor_missing_title_is_unprocessable(
        self, client, contributor, auth_headers, contributor_indicator, contributor_due_date
    ):
        response = client.post(
            "/progress_reports",
            json=report_payload(contributor_indicator.id, contributor_due_date.id, title=None),
            headers=auth_headers(contributor),
        )

        assert response.status_code == 422
        assert response.json()["detail"] == {"title": ["can't be blank"]}

    def test_null_flags_default_to_false(self, client, manager, auth_headers, indicator, due_date):
        response = client.post(
            "/progress_reports",
            json=report_payload(indicator.id, due_date.id, draft=None, document_public=None),
            headers=auth_headers(manager),
        )

        assert response.status_code == 201
        attributes = response.json()["data"]["attributes"]
        assert attributes["draft"] is False
        assert attributes["document-public"] is False

    def test_due_date_of_another_indicator_is_unprocessable(
        self, client, manager, auth_headers, indicator, contributor_due_date
    ):
        response = client.post(
            "/progress_reports",
            json=report_payload(indicator.id, contributor_due_date.id),
            headers=auth_headers(manager),
        )

        assert response.status_code == 422
        assert response.json()["detail"] == {"due_date": ["must belong to the indicator"]}

    def test_contributor_with_out_of_range_indicator_is_forbidden(
        self, client, contributor, auth_headers, due_date
    ):
        response = client.post(
            "/progress_reports",
            json=report_payload(2 ** 70, due_date.id),
            headers=auth_headers(contributor),
        )

        assert response.status_code == 403

    def test_out_of_range_due_date_is_unprocessable(self, client, manager, auth_headers, indicator):
        response = client.post(
            "/progress_reports",
            json=report_payload(indicator.id, 2 ** 70),
            headers=auth_headers(manager),
        )

        assert response.status_code == 422
        assert response.json()["detail"] == {"due_date": ["must exist"]}

    def test_malformed_types_are_unprocessable(
        self, client, manager, auth_headers, indicator, due_date
    ):
        response = client.post(
            "/progress_reports",
            json=report_payload(indicator.id, due_date.id, draft="not-a-flag"),
            headers=auth_headers(manager),
        )

        assert response.status_code == 422

    def test_unenveloped_payload_accepted(self, client, manager, auth_headers, indicator, due_date):
        response = client.post(
            "/progress_reports",
            json=report_payload(indicator.id, due_date.id)["progress_report"],
            headers=auth_headers(manager),
        )

        assert response.status_code == 201

    def test_unknown_attributes_ignored(self, client, manager, auth_headers, indicator, due_date):
        response = client.post(
            "/progress_reports",
            json=report_payload(indicator.id, due_date.id, last_modified_user_id=12345),
            headers=auth_headers(manager),
        )

        assert response.status_code == 201
        assert response.json()["data"]["attributes"]["last-modified-user-id"] == manager.id


class TestUpdate:
    """PUT/PATCH /progress_reports/{id}"""

    update = {"progress_report": {"title": "test update", "description": "test update"}}

    def test_not_signed_in_is_unauthorized(self, client, progress_report):
        response = client.put(f"/progress_reports/{progress_report.id}", json=self.update)

        assert response.status_code == 401

    def test_guest_is_forbidden(self, client, guest, auth_headers, progress_report):
        response = client.put(
            f"/progress_reports/{progress_report.id}",
            json=self.update,
            headers=auth_headers(guest),
        )

        assert response.status_code == 403

    def test_contributor_not_managing_indicator_is_forbidden(
        self, client, contributor, auth_headers, progress_report
    ):
        response = client.put(
            f"/progress_reports/{progress_report.id}",
            json=self.update,
            headers=auth_headers(contributor),
        )

        assert response.status_code == 403

    def test_contributor_managing_indicator_can_update(
        self, client, contributor, auth_headers, contributor_progress_report
    ):
        response = client.put(
            f"/progress_reports/{contributor_progress_report.id}",
            json=self.update,
            headers=auth_headers(contributor),
        )

        assert response.status_code == 200
        attributes = response.json()["data"]["attributes"]
        assert attributes["title"] == "test update"
        assert attributes["last-modified-user-id"] == contributor.id

    def test_manager_can_update(self, client, manager, auth_headers, progress_report):
        response = client.put(
            f"/progress_reports/{progress_report.id}",
            json=self.update,
            headers=auth_headers(manager),
        )

        assert response.status_code == 200

    def test_records_which_manager_updated(
        self, client, manager, auth_headers, contributor, contributor_progress_report, reports
    ):
        # Last written by the contributor, then by the manager
        reports.update(
            contributor_progress_report.id,
            UpdateProgressReportRequest(title="by contributor"),
            actor_id=contributor.id,
        )

        response = client.patch(
            f"/progress_reports/{contributor_progress_report.id}",
            json=self.update,
            headers=auth_headers(manager),
        )

        assert int(response.json()["data"]["attributes"]["last-modified-user-id"]) == manager.id

    def test_blank_title_is_unprocessable(self, client, manager, auth_headers, progress_report):
        response = client.put(
            f"/progress_reports/{progress_report.id}",
            json={"progress_report": {"title": ""}},
            headers=auth_headers(manager),
        )

        assert response.status_code == 422

    def test_missing_report(self, client, manager, auth_headers):
        response = client.put("/progress_reports/999", json=self.update, headers=auth_headers(manager))

        assert response.status_code == 404

    def test_id_beyond_integer_range(self, client, manager, auth_headers):
        response = client.put(
            f"/progress_reports/{2 ** 70}", json=self.update, headers=auth_headers(manager)
        )

        assert response.status_code == 404

    def test_moving_without_matching_due_date_is_unprocessable(
        self, client, manager, auth_headers, contributor_progress_report, indicator, due_date
    ):
        url = f"/progress_reports/{contributor_progress_report.id}"

        response = client.patch(
            url, json={"progress_report": {"indicator_id": indicator.id}}, headers=auth_headers(manager)
        )
        assert response.status_code == 422
        assert response.json()["detail"] == {"due_date": ["must belong to the indicator"]}

        response = client.patch(
            url,
            json={"progress_report": {"indicator_id": indicator.id, "due_date_id": due_date.id}},
            headers=auth_headers(manager),
        )
        assert response.status_code == 200
        assert response.json()["data"]["attributes"]["due-date-id"] == due_date.id

    def test_unauthenticated_before_lookup(self, client):
        response = client.put("/progress_reports/999", json=self.update)

        assert response.status_code == 401

    def test_contributor_cannot_move_report_to_foreign_indicator(
        self, client, contributor, auth_headers, contributor_progress_report, indicator
    ):
        response = client.patch(
            f"/progress_reports/{contributor_progress_report.id}",
            json={"progress_report": {"indicator_id": indicator.id}},
            headers=auth_headers(contributor),
        )

        assert response.status_code == 403

    def test_manager_can_publish_draft(self, client, manager, auth_headers, draft_progress_report):
        response = client.patch(
            f"/progress_reports/{draft_progress_report.id}",
            json={"progress_report": {"draft": False}},
            headers=auth_headers(manager),
        )

        assert response.status_code == 200
        assert response.json()["data"]["attributes"]["draft"] is False
        # Now visible without signing in
        assert client.get(f"/progress_reports/{draft_progress_report.id}").status_code == 200


class TestDestroy:
    """DELETE /progress_reports/{id}"""

    def test_not_signed_in_is_unauthorized(self, client, progress_report):
        response = client.delete(f"/progress_reports/{progress_report.id}")

        assert response.status_code == 401

    def test_guest_is_forbidden(self, client, guest, auth_headers, progress_report):
        response = client.delete(
            f"/progress_reports/{progress_report.id}", headers=auth_headers(guest)
        )

        assert response.status_code == 403

    def test_contributor_is_forbidden(self, client, contributor, auth_headers, contributor_progress_report):
        response = client.delete(
            f"/progress_reports/{contributor_progress_report.id}",
            headers=auth_headers(contributor),
        )

        assert response.status_code == 403

    def test_manager_can_delete(self, client, manager, auth_headers, progress_report):
        response = client.delete(
            f"/progress_reports/{progress_report.id}", headers=auth_headers(manager)
        )

        assert response.status_code == 204
        assert response.content == b""
        assert client.get(f"/progress_reports/{progress_report.id}").status_code == 404

    def test_missing_report(self, client, manager, auth_headers):
        response = client.delete("/progress_reports/999", headers=auth_headers(manager))

        assert response.status_code == 404

    def test_id_beyond_integer_range(self, client, manager, auth_headers):
        response = client.delete(f"/progress_reports/{2 ** 70}", headers=auth_headers(manager))

        assert response.status_code == 404


class TestAuthentication:
    """Bearer token handling."""

    def test_invalid_token_is_unauthorized(self, client, progress_report):
        response = client.get(
            f"/progress_reports/{progress_report.id}",
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid authentication credentials"

    def test_token_for_deleted_user_is_unauthorized(self, client):
        from tracker.policies.authorization import create_access_token

        token = create_access_token({"sub": "ghost@example.org", "user_id": 4242})
        response = client.get("/progress_reports", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_token_signed_with_other_secret(self, client, manager, auth_headers, monkeypatch):
        headers = auth_headers(manager)
        monkeypatch.setenv("JWT_SECRET_KEY", "rotated-secret")

        response = client.get("/users/me", headers=headers)

        assert response.status_code == 401

    def test_subject_only_token(self, client, manager):
        from tracker.policies.authorization import create_access_token

        token = create_access_token({"sub": manager.email})
        response = client.get("/users/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["data"]["attributes"]["role"] == "manager"

    def test_me_requires_authentication(self, client):
        assert client.get("/users/me").status_code == 401
