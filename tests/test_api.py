import asyncio
import logging

import pytest

from guest_validation.api.routes import upload as upload_route
from guest_validation.api.routes.guests import stop_pump

CSV = "Código,Nombre,Provincia\nA1,Ana,Salta\nB2,Bruno,Jujuy\n"


def upload(client, content, filename="guests.csv"):
    if isinstance(content, str):
        content = content.encode("utf-8")
    return client.post("/api/guests/upload", files={"file": (filename, content, "application/octet-stream")})


def guest_ids(client):
    return [row["guest_id"] for row in client.get("/api/guests").json()["rows"]]


# ==============================================================================
# Service
# ==============================================================================
def test_root_and_health(client):
    assert client.get("/").json()["status"] == "operational"

    health = client.get("/api/health").json()
    assert health["status"] == "healthy"
    assert health["database"] == "connected"


# ==============================================================================
# Upload
# ==============================================================================
def test_upload_csv_replaces_guest_list(client):
    response = upload(client, CSV)
    assert response.status_code == 200

    body = response.json()
    assert body["total_saved"] == 2
    assert body["headers"] == ["Código", "Nombre", "Provincia"]
    assert [guest["guest_id"] for guest in body["guests"]] == ["A1", "B2"]
    assert all(guest["confirmed"] is False for guest in body["guests"])

    upload(client, "Nombre\nZoe\n")
    assert guest_ids(client) == ["guest_1"]


def test_upload_xlsx(client, xlsx):
    content = xlsx([["DNI", "Nombre", "ID"], [111, "Ana", "x-1"], [222, "Bruno", "x-2"]])
    response = upload(client, content, filename="Invitados.XLSX")
    assert response.status_code == 200
    assert response.json()["total_saved"] == 2
    assert guest_ids(client) == ["x-1", "x-2"]


def test_upload_xlsx_saved_as_xls(client, xlsx):
    content = xlsx([["Código", "Nombre"], ["A1", "Ana"], ["B2", "Bruno"]])
    response = upload(client, content, filename="guests.xls")
    assert response.status_code == 200
    assert response.json()["headers"] == ["Código", "Nombre"]
    assert guest_ids(client) == ["A1", "B2"]


def test_upload_xls(client, xls):
    content = xls([["Código", "Nombre", "Confirmado"], ["A1", "Ana", True]])
    response = upload(client, content, filename="guests.xls")
    assert response.status_code == 200
    assert response.json()["guests"][0]["guest_data"] == {"Código": "A1", "Nombre": "Ana", "Confirmado": "TRUE"}


def test_upload_rejects_other_extensions_without_touching_store(client):
    upload(client, CSV)

    response = upload(client, CSV, filename="guests.txt")
    assert response.status_code == 400
    assert response.headers["X-Error-Code"] == "invalid_file_type"
    assert guest_ids(client) == ["A1", "B2"]


def test_upload_over_size_limit_is_rejected_before_parsing(client, monkeypatch):
    upload(client, CSV)

    def must_not_parse(*args, **kwargs):
        raise AssertionError("oversized upload reached the parser")

    monkeypatch.setattr(upload_route, "parse_upload", must_not_parse)
    oversized = b"a,b\n" + b"1,2\n" * (10 * 1024 * 1024 // 4 + 1)

    response = upload(client, oversized)
    assert response.status_code == 413
    assert response.headers["X-Error-Code"] == "file_too_large"
    assert guest_ids(client) == ["A1", "B2"]


@pytest.mark.parametrize(
    "content,code",
    [
        ("a,b\n", "insufficient_rows"),
        (",,\n1,2,3\n", "no_headers_detected"),
        ("a,\n,x\n", "no_valid_data_rows"),
    ],
)
def test_upload_parse_errors(client, content, code):
    response = upload(client, content)
    assert response.status_code == 422
    assert response.headers["X-Error-Code"] == code
    assert response.json()["detail"]


def test_upload_with_duplicate_identifiers_keeps_previous_guests(client):
    upload(client, CSV)

    response = upload(client, "ID,Nombre\n1,Ana\n1,Otra Ana\n")
    assert response.status_code == 500
    assert response.headers["X-Error-Code"] == "persistence_failed"
    assert guest_ids(client) == ["A1", "B2"]


# ==============================================================================
# Table and search
# ==============================================================================
def test_empty_table(client):
    body = client.get("/api/guests").json()
    assert body["state"] == "empty"
    assert body["rows"] == []
    assert body["total"] == 0


def test_table_snapshot_and_search(client):
    upload(client, CSV)

    body = client.get("/api/guests").json()
    assert body["state"] == "ok"
    assert body["source"] == "remote"
    assert body["headers"] == ["Nombre", "Provincia", "Código"]
    assert body["total"] == 2

    found = client.get("/api/guests", params={"search": "JUJ"}).json()
    assert [row["guest_id"] for row in found["rows"]] == ["B2"]

    missing = client.get("/api/guests", params={"search": "nobody"}).json()
    assert missing["state"] == "no_matches"
    assert missing["rows"] == []
    assert missing["total"] == 2


# ==============================================================================
# Toggle
# ==============================================================================
def test_toggle_guest(client):
    upload(client, CSV)

    confirmed = client.post("/api/guests/A1/toggle")
    assert confirmed.status_code == 200
    assert confirmed.json()["confirmed"] is True
    assert confirmed.json()["confirmed_at"] is not None
    assert client.get("/api/guests/confirmed").json() == {"confirmed_ids": ["A1"], "count": 1}

    snapshot = client.get("/api/guests").json()
    assert snapshot["confirmed_ids"] == ["A1"]
    assert snapshot["confirmed_count"] == 1

    restored = client.post("/api/guests/A1/toggle")
    assert restored.json()["confirmed"] is False
    assert restored.json()["confirmed_at"] is None


def test_toggle_unknown_guest(client):
    upload(client, CSV)
    response = client.post("/api/guests/nope/toggle")
    assert response.status_code == 404
    assert response.headers["X-Error-Code"] == "record_not_found"


# ==============================================================================
# Live table
# ==============================================================================
def test_live_table_pushes_changes(client):
    upload(client, CSV)

    with client.websocket_connect("/api/guests/live") as websocket:
        first = websocket.receive_json()
        assert first["type"] == "snapshot"
        assert first["data"]["total"] == 2
        assert first["data"]["confirmed_ids"] == []

        client.post("/api/guests/B2/toggle")
        update = websocket.receive_json()
        assert update["type"] == "snapshot"
        assert update["data"]["confirmed_ids"] == ["B2"]


def test_live_table_optimistic_toggle_and_search(client):
    upload(client, CSV)

    with client.websocket_connect("/api/guests/live?search=ana") as websocket:
        first = websocket.receive_json()
        assert [row["guest_id"] for row in first["data"]["rows"]] == ["A1"]

        websocket.send_json({"action": "toggle", "guest_id": "A1"})
        optimistic = websocket.receive_json()
        assert optimistic["data"]["confirmed_ids"] == ["A1"]

        reconciled = websocket.receive_json()
        assert reconciled["data"]["confirmed_ids"] == ["A1"]

        websocket.send_json({"action": "search", "term": ""})
        everyone = websocket.receive_json()
        assert everyone["data"]["total"] == 2
        assert len(everyone["data"]["rows"]) == 2


def test_live_table_reports_errors(client):
    upload(client, CSV)

    with client.websocket_connect("/api/guests/live") as websocket:
        websocket.receive_json()

        websocket.send_text("not json")
        assert websocket.receive_json()["code"] == "invalid_message"

        websocket.send_json({"action": "toggle", "guest_id": "nope"})
        optimistic = websocket.receive_json()
        assert optimistic["data"]["confirmed_ids"] == ["nope"]

        error = websocket.receive_json()
        assert error == {"type": "error", "code": "record_not_found", "message": "Guest nope not found"}

        resynced = websocket.receive_json()
        assert resynced["data"]["confirmed_ids"] == []


def test_stop_pump_reports_why_updates_stopped(caplog):
    async def crash():
        raise RuntimeError("socket gone")

    async def scenario():
        pump = asyncio.create_task(crash())
        await asyncio.sleep(0)
        return await stop_pump(pump)

    with caplog.at_level(logging.ERROR, logger="guest_validation.api.routes.guests"):
        outcome = asyncio.run(scenario())

    assert isinstance(outcome, RuntimeError)
    assert "socket gone" in caplog.text


def test_stop_pump_cancels_an_idle_pump(caplog):
    async def scenario():
        pump = asyncio.create_task(asyncio.Event().wait())
        await asyncio.sleep(0)
        outcome = await stop_pump(pump)
        return outcome, pump.cancelled()

    with caplog.at_level(logging.ERROR, logger="guest_validation.api.routes.guests"):
        outcome, cancelled = asyncio.run(scenario())

    assert outcome is None
    assert cancelled
    assert caplog.records == []
