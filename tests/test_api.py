import pytest
from fastapi.testclient import TestClient

from secureshare import Config, Role, SecureShareNode
from secureshare.api import create_app


@pytest.fixture
def receiver_client(tmp_path):
    node = SecureShareNode(Config(output_dir=tmp_path), role=Role.RECEIVER, session_id="RECV01")
    return TestClient(create_app(node))


@pytest.fixture
def sender_client(tmp_path):
    node = SecureShareNode(Config(output_dir=tmp_path), role=Role.SENDER, session_id="SEND01")
    return TestClient(create_app(node))


def test_root(receiver_client):
    response = receiver_client.get("/")
    assert response.status_code == 200
    assert response.json()["name"] == "SecureShare"
    assert response.json()["status"] == "not running"


def test_status_snapshot(receiver_client):
    response = receiver_client.get("/status")
    assert response.status_code == 200

    body = response.json()
    assert body["session_id"] == "RECV01"
    assert body["role"] == "receiver"
    assert body["state"] == "Idle"
    assert body["registered"] is False
    assert body["progress"]["fraction"] == 0.0


def test_progress(receiver_client):
    body = receiver_client.get("/progress").json()
    assert body["state"] == "Idle"
    assert body["bytes_processed"] == 0


def test_no_chunk_yet(receiver_client):
    assert receiver_client.get("/chunk").status_code == 404


def test_connect_validates_peer_id(receiver_client):
    assert receiver_client.post("/connect", json={"peer_id": "not-an-id"}).status_code == 400


def test_receiver_connect_binds_peer(receiver_client):
    response = receiver_client.post("/connect", json={"peer_id": "send01"})
    assert response.status_code == 200
    assert response.json()["peer_id"] == "SEND01"
    assert receiver_client.get("/status").json()["peer_id"] == "SEND01"


def test_sender_connect_without_relay_conflicts(sender_client):
    response = sender_client.post("/connect", json={"peer_id": "RECV01"})
    assert response.status_code == 409
    assert sender_client.get("/status").json()["state"] == "Failed"


def test_send_missing_file(sender_client, tmp_path):
    response = sender_client.post("/send", json={"file_path": str(tmp_path / "absent.bin")})
    assert response.status_code == 404


def test_send_before_ready_conflicts(sender_client, tmp_path):
    path = tmp_path / "a.txt"
    path.write_text("hello")
    response = sender_client.post("/send", json={"file_path": str(path)})
    assert response.status_code == 409


def test_receiver_cannot_send(receiver_client, tmp_path):
    path = tmp_path / "a.txt"
    path.write_text("hello")
    assert receiver_client.post("/send", json={"file_path": str(path)}).status_code == 400


def test_no_node():
    client = TestClient(create_app(None))
    assert client.get("/status").status_code == 503
