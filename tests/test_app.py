import pytest
from fastapi.testclient import TestClient

from salesdesk.app import create_app
from salesdesk.store import CrmStore
from conftest import AGENT_ANA, FakeBackend, make_settings

CLIENT = "573004445566"


@pytest.fixture
def client(tmp_path):
    app = create_app(make_settings(tmp_path), generator=FakeBackend(default="Claro que si"), store=CrmStore())
    return TestClient(app)


def test_message_endpoint_replies(client):
    response = client.post(
        "/api/messages",
        json={"sender_id": CLIENT, "text": "precio de la retay negra", "display_name": "Laura"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["classification"] == "PRODUCT_SEARCH_REPLY"
    assert body["reply_text"] == "Claro que si"
    assert body["notifications"] == []


def test_message_endpoint_handoff(client):
    body = client.post("/api/messages", json={"sender_id": CLIENT, "text": "quiero hablar con un asesor"}).json()
    assert body["classification"] == "ESCALATE_HUMAN_REQUEST"
    assert body["assignment"]["agent_name"] == "Ana"
    assert body["notifications"][0]["recipient"] == AGENT_ANA

    stats = client.get("/api/stats").json()
    assert stats["active_assignments"] == 1
    assert client.get("/api/clients").json()[0]["status"] == "assigned"

    closed = client.post(f"/api/assignments/{CLIENT}/close")
    assert closed.status_code == 200
    assert closed.json()["status"] == "completed"
    assert client.post(f"/api/assignments/{CLIENT}/close").status_code == 404


def test_suppressed_message_has_no_reply(client):
    body = client.post("/api/messages", json={"sender_id": CLIENT, "text": "Tu código es 774411"}).json()
    assert body["classification"] == "SUPPRESS_AUTOMATED_SENDER"
    assert body["reply_text"] is None
    assert client.get("/api/clients").json() == []


def test_search_endpoint_explains_ranking(client):
    body = client.get("/api/search", params={"q": "cuanto vale la retay negra", "limit": 2}).json()
    assert body["keywords"] == ["retay", "negra", "negro"]
    assert body["strategy"] == "search"
    assert body["total_matched"] == 4
    assert [hit["title"] for hit in body["items"]] == ["Retay G17 Negra", "Retay Volga"]
    assert body["items"][0]["prices"] == {"plus": "$1.250.000", "pro": "$1.290.000"}


def test_catalog_reload_reports_meta(client):
    body = client.post("/api/catalog/reload").json()
    assert body["loaded"] is True
    assert body["meta"]["item_count"] == 7
