from tests.utils.clock import BOOKING_DATE

THERAPISTS = "/api/v1/therapists"


def test_get_availability(client, therapist, patient_headers, weekday_rules):
    response = client.get(
        f"{THERAPISTS}/{therapist.id}/availability",
        params={"date": BOOKING_DATE.isoformat()},
        headers=patient_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["timezone"] == "UTC"
    assert len(body["slots"]) == 16


def test_unknown_therapist_returns_404(client, patient_headers):
    response = client.get(
        f"{THERAPISTS}/01HF4G12ABCDEF3456789XYZAB/availability",
        params={"date": BOOKING_DATE.isoformat()},
        headers=patient_headers,
    )

    assert response.status_code == 404


def test_available_days(client, therapist, patient_headers, weekday_rules):
    response = client.get(
        f"{THERAPISTS}/{therapist.id}/available-days",
        params={"year": 2030, "month": 1},
        headers=patient_headers,
    )

    assert response.status_code == 200
    assert response.json()["available_days"] == ["2030-01-07", "2030-01-14", "2030-01-21", "2030-01-28"]


def test_override_blocks_day_then_delete_restores(client, therapist, therapist_headers, patient_headers, weekday_rules):
    path = f"{THERAPISTS}/{therapist.id}/overrides/{BOOKING_DATE.isoformat()}"
    slots_url = f"{THERAPISTS}/{therapist.id}/availability"
    params = {"date": BOOKING_DATE.isoformat()}
    assert len(client.get(slots_url, params=params, headers=patient_headers).json()["slots"]) == 16

    blocked = client.put(path, json={"is_available": False, "reason": "Conference"}, headers=therapist_headers)

    assert blocked.status_code == 200
    assert blocked.json()["is_available"] is False
    assert client.get(slots_url, params=params, headers=patient_headers).json()["slots"] == []

    assert client.delete(path, headers=therapist_headers).status_code == 204
    assert len(client.get(slots_url, params=params, headers=patient_headers).json()["slots"]) == 16


def test_replace_schedule(client, therapist, therapist_headers):
    response = client.put(
        f"{THERAPISTS}/{therapist.id}/schedule",
        json=[{"day_of_week": 0, "start_time": "09:00", "end_time": "12:00", "session_duration": 60}],
        headers=therapist_headers,
    )

    assert response.status_code == 200
    assert response.json()[0]["start_time"] == "09:00:00"


def test_schedule_writes_need_the_owner(client, therapist, other_therapist):
    response = client.put(
        f"{THERAPISTS}/{therapist.id}/schedule",
        json=[],
        headers={"X-User-Id": other_therapist.id, "X-User-Type": "therapist"},
    )

    assert response.status_code == 403


def test_patients_cannot_write_schedules(client, therapist, patient_headers):
    response = client.put(f"{THERAPISTS}/{therapist.id}/schedule", json=[], headers=patient_headers)

    assert response.status_code == 403
