"""
Tests for the wallet-link HTTP client.
"""
import pytest
import requests
from eth_account import Account
from eth_account.messages import encode_defunct
from unittest.mock import MagicMock, patch

from tournament_ledger.exceptions import LinkRequestError
from tournament_ledger.identity.client import WalletLinkClient
from tournament_ledger.identity.linking import LINK_PROTOCOL_LABEL

from tests.test_helpers import TEST_PRIV_KEY

BASE_URL = "https://game.example/api"


def response(status_code=200, payload=None, text=""):
    mock = MagicMock()
    mock.status_code = status_code
    mock.reason = "Bad Request" if status_code >= 400 else "OK"
    mock.text = text
    if payload is None:
        mock.json.side_effect = ValueError("No JSON")
    else:
        mock.json.return_value = payload
    return mock


@pytest.fixture
def client():
    return WalletLinkClient(BASE_URL, token="persistent-id-0001")


class TestWalletLinkClient:
    def test_requires_token(self):
        with pytest.raises(ValueError):
            WalletLinkClient(BASE_URL, token="")

    def test_domain_defaults_to_host(self, client):
        assert client.domain == "game.example"
        assert WalletLinkClient(BASE_URL + "/", token="abc", domain="other").base_url == BASE_URL

    def test_me(self, client):
        with patch.object(client.session, "request", return_value=response(payload={"address": None})) as mock:
            assert client.me() is None
        args, kwargs = mock.call_args
        assert args == ("GET", f"{BASE_URL}/wallet/me")
        assert kwargs["headers"] == {"Authorization": "Bearer persistent-id-0001"}

    def test_request_nonce(self, client):
        payload = {"nonce": "ab" * 32, "expiresAt": 1700000600000}
        with patch.object(client.session, "request", return_value=response(payload=payload)) as mock:
            challenge = client.request_nonce("0x" + "11" * 20)
        assert challenge.nonce == "ab" * 32
        assert challenge.expires_at == 1700000600000
        assert mock.call_args.kwargs["json"] == {"address": "0x" + "11" * 20}

    def test_request_nonce_already_linked(self, client):
        payload = {"alreadyLinked": True, "address": "0x" + "11" * 20}
        with patch.object(client.session, "request", return_value=response(payload=payload)):
            assert client.request_nonce("0x" + "11" * 20) is None

    def test_error_status(self, client):
        with patch.object(client.session, "request",
                          return_value=response(400, payload={"detail": "Invalid or expired nonce"})):
            with pytest.raises(LinkRequestError) as exc_info:
                client.submit_link("0x" + "11" * 20, "msg", "0xsig", "nonce")
        assert exc_info.value.status_code == 400
        assert str(exc_info.value) == "Invalid or expired nonce"

    def test_error_without_json(self, client):
        with patch.object(client.session, "request", return_value=response(500, text="upstream died")):
            with pytest.raises(LinkRequestError) as exc_info:
                client.me()
        assert exc_info.value.status_code == 500
        assert "upstream died" in str(exc_info.value)

    def test_transport_error(self, client):
        with patch.object(client.session, "request", side_effect=requests.ConnectionError("refused")):
            with pytest.raises(LinkRequestError) as exc_info:
                client.me()
        assert exc_info.value.status_code is None

    def test_invalid_json(self, client):
        with patch.object(client.session, "request", return_value=response(200, text="<html>")):
            with pytest.raises(LinkRequestError):
                client.me()


class TestLinkWalletIfNeeded:
    def test_already_linked(self, client):
        account = Account.from_key(TEST_PRIV_KEY)
        sign = MagicMock()
        with patch.object(client.session, "request",
                          return_value=response(payload={"address": account.address.lower()})) as mock:
            assert client.link_wallet_if_needed(account.address, sign) is None
        assert mock.call_count == 1
        sign.assert_not_called()

    def test_full_flow(self, client):
        account = Account.from_key(TEST_PRIV_KEY)
        signed = {}

        def sign(message, address):
            signed["message"] = message
            signed["address"] = address
            return "0x" + bytes(account.sign_message(encode_defunct(text=message)).signature).hex()

        replies = [
            response(payload={"address": None}),
            response(payload={"nonce": "cd" * 32, "expiresAt": 1700000600000}),
            response(payload={"address": account.address, "updatedAt": 1700000000000}),
        ]
        with patch.object(client.session, "request", side_effect=replies) as mock:
            link = client.link_wallet_if_needed(account.address, sign)

        assert link.address == account.address
        assert link.updated_at == 1700000000000
        assert signed["address"] == account.address
        lines = signed["message"].splitlines()
        assert lines[0] == LINK_PROTOCOL_LABEL
        assert "Domain: game.example" in lines
        assert f"Nonce: {'cd' * 32}" in lines

        body = mock.call_args_list[2].kwargs["json"]
        assert body["nonce"] == "cd" * 32
        assert body["message"] == signed["message"]
        assert body["address"] == account.address

    def test_server_reports_linked_after_me(self, client):
        sign = MagicMock()
        replies = [
            response(payload={"address": None}),
            response(payload={"alreadyLinked": True, "address": "0x" + "11" * 20}),
        ]
        with patch.object(client.session, "request", side_effect=replies):
            assert client.link_wallet_if_needed("0x" + "11" * 20, sign) is None
        sign.assert_not_called()
