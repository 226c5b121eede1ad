"""
Tests for the HTTP API

Runs the FastAPI app in-process with an injected registry.
"""

from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient

from linkr.config import ConflictPolicy, LinkrSettings
from linkr.core import AuthorizationAction, LinkBuilder, LinkRegistry, checksum_account
from linkr.db import InMemoryLinkStore, LockTimeoutError
from linkr.main import create_app


ACCOUNT = "0x" + "5a" * 20


def _client(**settings) -> TestClient:
    registry = LinkRegistry(settings=LinkrSettings(**settings), sinks=[])
    return TestClient(create_app(registry))


def _push_body(private_key, account=ACCOUNT, **extra):
    event = LinkBuilder.build_event(private_key, account)
    return {"account": account, "event": event.to_nostr(), **extra}


class TestLinkCommands:

    @pytest.fixture
    def client(self):
        return _client()

    def test_push_returns_201(self, client, nostr_keys):
        response = client.post("/links", json=_push_body(nostr_keys[0]))
        assert response.status_code == 201
        assert response.json() == {"account": ACCOUNT, "pubkey": nostr_keys[1]}

    def test_lookups(self, client, nostr_keys):
        client.post("/links", json=_push_body(nostr_keys[0]))

        by_account = client.get(f"/links/accounts/{ACCOUNT.upper().replace('0X', '0x')}")
        assert by_account.status_code == 200
        assert by_account.json() == {"account": ACCOUNT, "pubkey": nostr_keys[1]}

        by_key = client.get(f"/links/pubkeys/{nostr_keys[1]}")
        assert by_key.json() == {"pubkey": nostr_keys[1], "account": ACCOUNT}

    def test_lookup_missing_returns_null(self, client, nostr_keys):
        response = client.get(f"/links/pubkeys/{nostr_keys[1]}")
        assert response.status_code == 200
        assert response.json()["account"] is None

    def test_list_links(self, client, nostr_keys):
        client.post("/links", json=_push_body(nostr_keys[0]))
        body = client.get("/links").json()
        assert body["count"] == 1
        assert body["links"] == [{"account": ACCOUNT, "pubkey": nostr_keys[1]}]

    def test_pull(self, client, nostr_keys):
        client.post("/links", json=_push_body(nostr_keys[0]))

        response = client.post(f"/links/{ACCOUNT}/pull")
        assert response.status_code == 200
        assert response.json()["pubkey"] == nostr_keys[1]
        assert client.get(f"/links/accounts/{ACCOUNT}").json()["pubkey"] is None

    def test_pull_missing_is_404(self, client):
        response = client.post(f"/links/{ACCOUNT}/pull")
        assert response.status_code == 404
        assert response.json()["code"] == "NoLinkFound"

    def test_wrong_kind_is_400(self, client, nostr_keys):
        event = LinkBuilder.sign_event(nostr_keys[0], 1_700_000_000, 1, [], ACCOUNT[2:])
        response = client.post("/links", json={"account": ACCOUNT, "event": event.to_nostr()})
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidKind"
        assert "detail" in response.json()

    def test_malformed_account_is_400(self, client):
        response = client.get("/links/accounts/0x1234")
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidIdentifier"

    def test_malformed_event_is_422(self, client, nostr_keys):
        body = _push_body(nostr_keys[0])
        body["event"]["pubkey"] = "xyz"
        response = client.post("/links", json=body)
        assert response.status_code == 422

    def test_request_id_header(self, client):
        response = client.get("/links", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert client.get("/health").headers.get("X-Request-ID")


class TestConflictsAndAuthorization:

    def test_conflict_is_409(self, nostr_keys):
        client = _client(conflict_policy=ConflictPolicy.REJECT)
        client.post("/links", json=_push_body(nostr_keys[0]))

        other = "0x" + "77" * 20
        response = client.post("/links", json=_push_body(nostr_keys[0], account=other))
        assert response.status_code == 409
        assert response.json()["code"] == "ConflictingLink"

    def test_authorization_required(self, nostr_keys, account_keys):
        client = _client(require_account_signature=True)
        (account_private, account) = account_keys

        response = client.post("/links", json=_push_body(nostr_keys[0], account=account))
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidSignature"

        signature = LinkBuilder.sign_authorization(
            account_private, AuthorizationAction.LINK, nostr_keys[1]
        )
        response = client.post(
            "/links",
            json=_push_body(nostr_keys[0], account=account, account_signature=signature),
        )
        assert response.status_code == 201

        unlink = LinkBuilder.sign_authorization(
            account_private, AuthorizationAction.UNLINK, nostr_keys[1]
        )
        response = client.post(f"/links/{account}/pull", json={"account_signature": unlink})
        assert response.status_code == 200

    def test_authorization_message(self, nostr_keys):
        client = _client()
        response = client.get(
            "/links/authorization-message",
            params={"action": "unlink", "account": ACCOUNT, "pubkey": nostr_keys[1]},
        )
        assert response.status_code == 200
        assert response.json()["message"] == (
            f"Unlink Ethereum {checksum_account(ACCOUNT)} from Nostr {nostr_keys[1]}"
        )

    def test_authorization_message_bad_action(self, nostr_keys):
        client = _client()
        response = client.get(
            "/links/authorization-message",
            params={"action": "steal", "account": ACCOUNT, "pubkey": nostr_keys[1]},
        )
        assert response.status_code == 422


class BusyStore(InMemoryLinkStore):
    @contextmanager
    def begin_write(self):
        raise LockTimeoutError("Link store busy - could not acquire write lock. Try again.")
        yield


class TestSystemEndpoints:

    def test_health(self):
        assert _client().get("/health").json()["status"] == "healthy"

    def test_health_detailed(self):
        response = _client().get("/health/detailed")
        assert response.status_code == 200
        checks = response.json()["checks"]
        assert checks["bijection"]["valid"] is True
        assert checks["link_store"]["store_type"] == "InMemoryLinkStore"

    def test_health_detailed_reports_broken_bijection(self):
        store = InMemoryLinkStore()
        with store.begin_write() as ctx:
            ctx.put(ACCOUNT, "aa" * 32)
            ctx.delete_pubkey("aa" * 32)
            ctx.commit()
        client = TestClient(create_app(LinkRegistry(store=store, sinks=[])))

        response = client.get("/health/detailed")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_metrics(self, nostr_keys):
        client = _client()
        client.post("/links", json=_push_body(nostr_keys[0]))
        client.post(f"/links/{'0x' + '99' * 20}/pull")

        summary = client.get("/metrics").json()
        assert summary["links_pushed"] == 1
        assert summary["rejections"] == {"NoLinkFound": 1}

    def test_lock_timeout_is_503(self, nostr_keys):
        client = TestClient(create_app(LinkRegistry(store=BusyStore(), sinks=[])))
        response = client.post("/links", json=_push_body(nostr_keys[0]))
        assert response.status_code == 503
        assert response.json()["code"] == "LockTimeout"
