"""Tests for the FastAPI USSD callback."""

import pytest
from fastapi.testclient import TestClient

from cryptodial.chains import ChainId
from cryptodial.config import CryptodialConfig, SessionConfig, StorageConfig, VaultConfig
from cryptodial.server import create_app

from conftest import FakeAdapter


@pytest.fixture
def config():
    return CryptodialConfig(
        name="Cryptodial",
        vault=VaultConfig(salt="test-salt", scrypt_n=2**8),
        storage=StorageConfig(db_path=":memory:"),
        sessions=SessionConfig(db_path=":memory:", sweep_interval=3600),
    )


@pytest.fixture
def client(config):
    app = create_app(config)
    with TestClient(app) as test_client:
        adapter = FakeAdapter()
        for chain_id in ChainId:
            app.state.service.registry.register(chain_id, adapter)
        yield test_client


def _ussd(client, text, session_id="ATUid_1", phone="+254700000001"):
    return client.post(
        "/ussd",
        data={
            "sessionId": session_id,
            "serviceCode": "*384*123#",
            "phoneNumber": phone,
            "text": text,
        },
    )


class TestUssdCallback:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_first_request_gets_main_menu(self, client):
        resp = _ussd(client, "")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert resp.text.startswith("CON Welcome to Cryptodial")

    def test_text_history_drives_the_menu(self, client):
        _ussd(client, "")
        resp = _ussd(client, "1")
        assert resp.text.startswith("CON Select network:")

        resp = _ussd(client, "1*1")
        assert "Enter 6-digit PIN:" in resp.text

        resp = _ussd(client, "1*1*135790")
        assert resp.text.startswith("CON Wallet created!")

    def test_exit_ends_the_call(self, client):
        _ussd(client, "")
        resp = _ussd(client, "0")
        assert resp.text.startswith("END ")

    def test_missing_fields_are_rejected(self, client):
        resp = client.post("/ussd", data={"text": ""})
        assert resp.status_code == 422


def test_missing_salt_fails_startup():
    config = CryptodialConfig(
        storage=StorageConfig(db_path=":memory:"),
        sessions=SessionConfig(db_path=":memory:"),
    )
    config.vault.salt = "${CRYPTODIAL_TEST_UNSET_SALT}"
    with pytest.raises(ValueError, match="encryption salt"):
        with TestClient(create_app(config)):
            pass
