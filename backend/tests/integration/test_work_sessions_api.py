from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient


def _create_session(client: TestClient, team_name: str = "Ланка 1", **overrides: Any) -> dict[str, Any]:
    payload = {
        "team_name": team_name,
        "device_type": "DRAGER_PSS3000",
        "members": [
            {"full_name": "Іван Петренко", "pressure": 300, "role": "SQUAD_LEADER"},
            {"full_name": "Олег Коваль", "pressure": "310"},
        ],
        "operation_type": "FIRE",
    }
    payload.update(overrides)
    response = client.post("/api/work-sessions", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_device_catalog_is_listed(client: TestClient) -> None:
    response = client.get("/api/devices")

    assert response.status_code == 200, response.text
    device_types = [device["device_type"] for device in response.json()]
    assert device_types == ["DRAGER_PSS3000", "DRAGER_PSS4000", "MSA", "ASP2"]


def test_reference_data_lists_labels_and_phase_order(client: TestClient) -> None:
    response = client.get("/api/reference")

    assert response.status_code == 200, response.text
    reference = response.json()
    assert {"value": "ASP2", "label": "АСП-2"} in reference["device_types"]
    assert [option["value"] for option in reference["operation_types"]] == [
        "FIRE",
        "ACCIDENT",
        "TRAINING",
        "EXERCISE",
    ]
    assert reference["session_phases"][0] == "ENTERED"
    assert reference["session_phases"][-1] == "JOURNALED"


def test_calculator_summary(client: TestClient) -> None:
    response = client.post(
        "/api/calculator",
        json={"device_type": "Drager PSS3000", "pressures": [310, 300]},
    )

    assert response.status_code == 200, response.text
    summary = response.json()
    assert summary["min_pressure"] == 300
    assert summary["protection_time"] == 42
    assert summary["critical_pressure"] == 125
    assert summary["exit_timer_seconds"] == 21 * 60


def test_calculator_rejects_unknown_device(client: TestClient) -> None:
    response = client.post("/api/calculator", json={"device_type": "Scott", "pressures": [300]})

    assert response.status_code == 422


def test_work_session_full_lifecycle(client: TestClient) -> None:
    created = _create_session(client)
    session_id = created["id"]
    assert created["phase"] == "ENTERED"
    assert created["protection_time"] == 42
    assert created["expected_exit_time"] is not None

    state = client.get("/api/work-sessions").json()
    assert state["current_session_id"] == session_id
    assert [session["id"] for session in state["sessions"]] == [session_id]

    response = client.post(f"/api/work-sessions/{session_id}/find-source")
    assert response.status_code == 200, response.text
    assert response.json()["phase"] == "SEARCHING_FOR_SOURCE"

    response = client.post(
        f"/api/work-sessions/{session_id}/start-work",
        json={"pressure_at_source": 220},
    )
    assert response.status_code == 200, response.text
    working = response.json()
    assert working["phase"] == "WORKING_AT_SOURCE"
    assert working["exit_start_pressure"] == 130
    assert working["pending_validation_error"] is None
    assert "CONSUMPTION_ANOMALY" in [warning["kind"] for warning in working["warnings"]]

    response = client.post(f"/api/work-sessions/{session_id}/start-egress")
    assert response.status_code == 200, response.text
    assert response.json()["phase"] == "EXITING_ZONE"

    response = client.post(
        f"/api/work-sessions/{session_id}/journal",
        json={"address": "вул. Шевченка, 5"},
    )
    assert response.status_code == 200, response.text
    record = response.json()
    assert record["session_id"] == session_id
    assert record["work_address"] == "вул. Шевченка, 5"
    assert record["exit_start_pressure"] == 130

    response = client.get(f"/api/work-sessions/{session_id}")
    assert response.status_code == 404


def test_rejected_pressure_is_reported_once(client: TestClient) -> None:
    session_id = _create_session(client)["id"]
    client.post(f"/api/work-sessions/{session_id}/find-source")

    response = client.post(
        f"/api/work-sessions/{session_id}/start-work",
        json={"pressure_at_source": 330},
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["phase"] == "SEARCHING_FOR_SOURCE"
    assert body["pending_validation_error"]["kind"] == "PRESSURE_ABOVE_TEAM_MINIMUM"

    first = client.post(f"/api/work-sessions/{session_id}/validation-error/ack")
    second = client.post(f"/api/work-sessions/{session_id}/validation-error/ack")
    assert first.status_code == 200, first.text
    assert first.json()["limit"] == 300
    assert second.json() is None


def test_duplicate_team_conflicts(client: TestClient) -> None:
    _create_session(client, team_name="Ланка 7")

    response = client.post(
        "/api/work-sessions",
        json={
            "team_name": "Ланка 7",
            "members": [
                {"full_name": "Андрій Мельник", "pressure": 290},
                {"full_name": "Петро Бондар", "pressure": 295},
            ],
        },
    )

    assert response.status_code == 409, response.text


def test_wrong_phase_conflicts(client: TestClient) -> None:
    session_id = _create_session(client)["id"]

    response = client.post(f"/api/work-sessions/{session_id}/start-egress")

    assert response.status_code == 409, response.text


def test_team_must_have_two_active_members(client: TestClient) -> None:
    response = client.post(
        "/api/work-sessions",
        json={"team_name": "Ланка 3", "members": [{"full_name": "Іван Петренко", "pressure": 300}]},
    )

    assert response.status_code == 422


def test_unknown_saved_team_is_not_found(client: TestClient) -> None:
    response = client.post("/api/work-sessions", json={"team_name": "Ланка 404"})

    assert response.status_code == 404, response.text


def test_delete_and_select_sessions(client: TestClient) -> None:
    first_id = _create_session(client, team_name="Ланка 1")["id"]
    second_id = _create_session(client, team_name="Ланка 2")["id"]

    response = client.post(f"/api/work-sessions/{second_id}/select")
    assert response.status_code == 200, response.text
    assert response.json()["current_session_id"] == second_id

    response = client.delete(f"/api/work-sessions/{second_id}")
    assert response.status_code == 200, response.text

    state = client.get("/api/work-sessions").json()
    assert state["current_session_id"] == first_id

    response = client.delete(f"/api/work-sessions/{second_id}")
    assert response.status_code == 404


def test_background_reconcile_and_lifecycle(client: TestClient) -> None:
    session_id = _create_session(client)["id"]
    before = client.get(f"/api/work-sessions/{session_id}").json()["timers"]["communication_timer"]

    response = client.post("/api/runtime/reconcile", json={"elapsed_seconds": 120})
    assert response.status_code == 409, response.text

    response = client.post("/api/runtime/lifecycle", json={"state": "BACKGROUND"})
    assert response.status_code == 200, response.text
    assert client.get("/api/work-sessions").json()["suspended"] is True

    response = client.post("/api/runtime/reconcile", json={"elapsed_seconds": 120})
    assert response.status_code == 200, response.text
    assert client.get("/api/work-sessions").json()["suspended"] is False
    after = client.get(f"/api/work-sessions/{session_id}").json()["timers"]["communication_timer"]
    assert before - 125 < after <= before - 120

    response = client.post("/api/runtime/lifecycle", json={"state": "ACTIVE"})
    assert response.status_code == 200, response.text
    assert response.json() == []
    resumed = client.get(f"/api/work-sessions/{session_id}").json()["timers"]["communication_timer"]
    assert resumed > before - 125


def test_runtime_health(client: TestClient) -> None:
    response = client.get("/api/runtime/health")

    assert response.status_code == 200, response.text
    assert response.json()["loop_interval_sec"] == 1.0


def test_websocket_pushes_registry_state(client: TestClient) -> None:
    session_id = _create_session(client)["id"]

    with client.websocket_connect("/api/ws") as websocket:
        first = websocket.receive_json()
        assert first["type"] == "registry_state"
        assert first["state"]["sessions"][0]["id"] == session_id

        websocket.send_json({"type": "ping"})
        for _ in range(12):
            message = websocket.receive_json()
            if message["type"] == "pong":
                break
        else:
            raise AssertionError("Did not receive pong")

        websocket.send_json({"type": "select_session", "sessionId": "not-a-uuid"})
        for _ in range(12):
            message = websocket.receive_json()
            if message["type"] == "error":
                assert message["code"] == "BAD_MESSAGE"
                break
        else:
            raise AssertionError("Did not receive error for malformed sessionId")
