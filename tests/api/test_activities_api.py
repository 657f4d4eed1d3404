from datetime import datetime, timezone

from langlog_server.processing_service.db_models import ExperienceLedgerEntry


def test_manual_activity_round_trip(client, headers, db):
    created = client.post("/api/v1/activities", json={"title": "Textbook chapter 3", "durationInMinutes": 30},
                          headers=headers)

    assert created.status_code == 201
    body = created.json()
    assert body["isManuallyTracked"] is True
    assert body["state"] == "completed"
    assert body["durationInSeconds"] == 1800
    assert body["languageCode"] == "ja"
    assert body["awardedExperience"] > 0

    recent = client.get("/api/v1/activities/recent", headers=headers).json()
    assert [a["id"] for a in recent] == [body["id"]]

    series = client.get("/api/v1/activities/xp-timeseries", params={"range": "7d"}, headers=headers).json()
    assert series["days"] == 7
    assert len(series["points"]) == 7
    assert series["totalXp"] == body["awardedExperience"]

    assert client.delete(f"/api/v1/activities/{body['id']}", headers=headers).status_code == 204
    assert client.get("/api/v1/activities/recent", headers=headers).json() == []
    deltas = [e.delta_experience for e in db.query(ExperienceLedgerEntry).order_by(ExperienceLedgerEntry.sequence)]
    assert sum(deltas) == 0


def test_manual_activity_validation(client, headers):
    response = client.post("/api/v1/activities", json={"title": "Nothing", "durationInMinutes": 0}, headers=headers)
    assert response.status_code == 422


def test_manual_activity_in_unconfigured_language(client, headers):
    response = client.post("/api/v1/activities", json={"title": "Lesson", "durationInMinutes": 10,
                                                       "languageCode": "ko",
                                                       "occurredAt": datetime(2025, 3, 1, tzinfo=timezone.utc).isoformat()},
                           headers=headers)
    assert response.status_code == 409


def test_bad_range(client, headers):
    response = client.get("/api/v1/activities/xp-timeseries", params={"range": "90d"}, headers=headers)
    assert response.status_code == 422


def test_delete_missing_activity(client, headers):
    response = client.delete("/api/v1/activities/00000000-0000-0000-0000-000000000000", headers=headers)
    assert response.status_code == 404
