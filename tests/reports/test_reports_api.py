"""Tests for the admin report endpoints."""

import time
from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi import status


def _payload(now, **overrides) -> dict:
    payload = {
        "type": "enrollments",
        "dateRange": {
            "start": (now - timedelta(days=365)).isoformat(),
            "end": (now + timedelta(days=1)).isoformat(),
        },
        "format": "json",
    }
    payload.update(overrides)
    return payload


def _wait_until_finished(client, report_id: str, headers: dict, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = client.get(f"/api/admin/reports/{report_id}", headers=headers).json()
        if data["status"] in ("ready", "failed"):
            return data
        time.sleep(0.02)
    pytest.fail(f"Report {report_id} did not finish within {timeout}s")


class TestGenerate:
    """Tests for POST /api/admin/reports/generate."""

    def test_accepted(self, client, admin_headers, now):
        response = client.post(
            "/api/admin/reports/generate", json=_payload(now), headers=admin_headers
        )

        assert response.status_code == status.HTTP_202_ACCEPTED
        data = response.json()
        assert data["status"] == "pending"
        assert data["report_id"]

    def test_invalid_date_range(self, client, admin_headers, now):
        payload = _payload(
            now,
            dateRange={
                "start": now.isoformat(),
                "end": (now - timedelta(days=1)).isoformat(),
            },
        )

        response = client.post(
            "/api/admin/reports/generate", json=payload, headers=admin_headers
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_date_only_range(self, client, admin_headers, now):
        payload = _payload(
            now,
            dateRange={
                "start": f"{now.year - 1}-01-01",
                "end": f"{now.year + 1}-01-01",
            },
        )

        response = client.post(
            "/api/admin/reports/generate", json=payload, headers=admin_headers
        )

        assert response.status_code == status.HTTP_202_ACCEPTED
        finished = _wait_until_finished(client, response.json()["report_id"], admin_headers)
        assert finished["status"] == "ready"
        assert finished["row_count"] == 4

    def test_mixed_timezone_range(self, client, admin_headers, now):
        payload = _payload(
            now,
            dateRange={
                "start": (now - timedelta(days=365)).replace(tzinfo=None).isoformat(),
                "end": (now + timedelta(days=1)).isoformat().replace("+00:00", "Z"),
            },
        )

        response = client.post(
            "/api/admin/reports/generate", json=payload, headers=admin_headers
        )

        assert response.status_code == status.HTTP_202_ACCEPTED
        finished = _wait_until_finished(client, response.json()["report_id"], admin_headers)
        assert finished["status"] == "ready"
        assert finished["row_count"] == 4

    def test_mixed_timezone_range_out_of_order(self, client, admin_headers, now):
        payload = _payload(
            now,
            dateRange={
                "start": now.replace(tzinfo=None).isoformat(),
                "end": (now - timedelta(days=1)).isoformat().replace("+00:00", "Z"),
            },
        )

        response = client.post(
            "/api/admin/reports/generate", json=payload, headers=admin_headers
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_student_as_instructor_filter(self, client, admin_headers, seed, now):
        payload = _payload(now, filters={"instructor_ids": [str(seed.student_good_id)]})

        response = client.post(
            "/api/admin/reports/generate", json=payload, headers=admin_headers
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "not an instructor" in response.json()["message"]

    def test_unknown_course_filter(self, client, admin_headers, now):
        payload = _payload(now, filters={"course_ids": [str(uuid4())]})

        response = client.post(
            "/api/admin/reports/generate", json=payload, headers=admin_headers
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "Unknown course id" in response.json()["message"]

    def test_unknown_report_type(self, client, admin_headers, now):
        response = client.post(
            "/api/admin/reports/generate",
            json=_payload(now, type="revenue"),
            headers=admin_headers,
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_requires_admin(self, client, student_headers, now):
        response = client.post(
            "/api/admin/reports/generate", json=_payload(now), headers=student_headers
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestStatusAndDownload:
    """Tests for report polling and download."""

    def test_unknown_report(self, client, admin_headers):
        report_id = uuid4()

        status_response = client.get(f"/api/admin/reports/{report_id}", headers=admin_headers)
        download = client.get(
            f"/api/admin/reports/{report_id}/download", headers=admin_headers
        )

        assert status_response.status_code == status.HTTP_404_NOT_FOUND
        assert download.status_code == status.HTTP_404_NOT_FOUND

    def test_json_report_download(self, client, admin_headers, now):
        report_id = client.post(
            "/api/admin/reports/generate", json=_payload(now), headers=admin_headers
        ).json()["report_id"]

        finished = _wait_until_finished(client, report_id, admin_headers)
        response = client.get(f"/api/admin/reports/{report_id}/download", headers=admin_headers)

        assert finished["status"] == "ready"
        assert finished["row_count"] == 4
        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"] == "application/json"
        assert f'filename="enrollments-{report_id}.json"' in response.headers[
            "content-disposition"
        ]
        assert response.json()["row_count"] == 4

    def test_csv_report_download(self, client, admin_headers, now):
        report_id = client.post(
            "/api/admin/reports/generate",
            json=_payload(now, type="course_performance", format="csv"),
            headers=admin_headers,
        ).json()["report_id"]

        _wait_until_finished(client, report_id, admin_headers)
        response = client.get(f"/api/admin/reports/{report_id}/download", headers=admin_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.headers["content-type"].startswith("text/csv")
        lines = response.text.strip().splitlines()
        assert lines[0].startswith("course_id,course_title")
        assert len(lines) == 4
