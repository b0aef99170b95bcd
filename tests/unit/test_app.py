"""End-to-end tests for the HTTP routes and the /ws socket endpoint."""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from livebid.config import get_server_config
from livebid.identity.tokens import issue_token
from livebid.main import app
from livebid.transport.timestamps import format_timestamp, utcnow

SERVER_YAML = """\
auth:
  issuer_public_key_path: issuer_public.pem
  token_max_age_seconds: 3600
  max_clock_skew_ms: 2000
store:
  backend: in_memory
bidding:
  allow_self_outbid: false
  default_currency: EUR
scheduler:
  sweep_interval_ms: 50
  max_extensions: 3
fanout:
  send_timeout_ms: 500
"""


@pytest.fixture
def client(tmp_path, identities_path, issuer_keys, monkeypatch):
    _, public_pem = issuer_keys
    (tmp_path / "issuer_public.pem").write_text(public_pem)
    config_path = tmp_path / "server.yaml"
    config_path.write_text(SERVER_YAML)
    monkeypatch.setenv("LIVEBID_CONFIG_PATH", str(config_path))
    monkeypatch.setenv("LIVEBID_IDENTITIES_PATH", str(identities_path))
    get_server_config.cache_clear()
    with TestClient(app) as test_client:
        yield test_client
    get_server_config.cache_clear()


@pytest.fixture
def token(issuer_keys):
    private_pem, _ = issuer_keys

    def _token(identity_id: str) -> str:
        return issue_token(identity_id, private_pem)

    return _token


def auction_body(auction_id: str = "auc_live", **overrides):
    now = utcnow()
    body = {
        "auction_id": auction_id,
        "title": "Monday fleet sale",
        "start_time": format_timestamp(now - timedelta(minutes=1)),
        "end_time": format_timestamp(now + timedelta(hours=1)),
        "currency": "EUR",
        "extend_window_seconds": 120,
        "extend_by_seconds": 120,
        "vehicles": [
            {"vehicle_id": f"{auction_id}_veh_1", "starting_price": 1000, "min_increment": 50, "reserve_price": 1500},
            {"vehicle_id": f"{auction_id}_veh_2", "starting_price": "2500.00", "min_increment": "100"},
        ],
    }
    body.update(overrides)
    return body


def bearer(value: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {value}"}


class TestMeta:
    """Service metadata and admin endpoints."""

    def test_ping(self, client):
        response = client.get("/ping")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_root_describes_service(self, client):
        body = client.get("/").json()

        assert body["service"] == "livebid"
        assert body["store_backend"] == "in_memory"
        assert body["scheduler"]["sweep_interval_ms"] == 50

    def test_admin_endpoints(self, client):
        client.post("/auctions", json=auction_body())

        health = client.get("/admin/health").json()
        stats = client.get("/admin/stats").json()
        config = client.get("/admin/config").json()
        rooms = client.get("/admin/rooms").json()

        assert health["status"] == "healthy"
        assert health["scheduler_running"] is True
        assert stats["total_auctions"] == 1
        assert stats["total_lots"] == 2
        assert stats["auctions_by_status"] == {"active": 1}
        assert config["storage_backend"] == "in_memory"
        assert config["issuer_key_configured"] is True
        assert config["max_extensions"] == 3
        assert rooms == {"connections": 0, "rooms": []}


class TestAuctionRoutes:
    """Creating, reading and cancelling auctions."""

    def test_create_auction_goes_live_when_due(self, client):
        response = client.post("/auctions", json=auction_body())

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "active"
        assert body["max_extensions"] == 3
        assert [v["vehicle_id"] for v in body["vehicles"]] == ["auc_live_veh_1", "auc_live_veh_2"]
        assert client.get("/auctions/auc_live").json()["status"] == "active"

    def test_future_auction_stays_upcoming(self, client):
        now = utcnow()
        body = auction_body(
            start_time=format_timestamp(now + timedelta(hours=1)),
            end_time=format_timestamp(now + timedelta(hours=2)),
        )

        assert client.post("/auctions", json=body).json()["status"] == "upcoming"

    def test_invalid_bodies(self, client):
        assert client.post("/auctions", json={"vehicles": []}).status_code == 422
        backwards = auction_body(end_time=format_timestamp(utcnow() - timedelta(hours=2)))
        assert client.post("/auctions", json=backwards).status_code == 422
        zero_step = auction_body(
            vehicles=[{"vehicle_id": "v", "starting_price": 1, "min_increment": 0}]
        )
        assert client.post("/auctions", json=zero_step).status_code == 422

    def test_duplicate_auction(self, client):
        assert client.post("/auctions", json=auction_body()).status_code == 201
        assert client.post("/auctions", json=auction_body()).status_code == 409

    def test_unknown_auction(self, client):
        assert client.get("/auctions/nope").status_code == 404
        assert client.post("/auctions/nope/cancel").status_code == 404

    def test_cancel(self, client):
        client.post("/auctions", json=auction_body())

        first = client.post("/auctions/auc_live/cancel")
        second = client.post("/auctions/auc_live/cancel")

        assert first.status_code == 200
        assert first.json()["status"] == "cancelled"
        assert second.status_code == 409
        assert second.json()["detail"]["kind"] == "auction-not-open"


class TestBidRoutes:
    """REST bid submission mirrors the socket place-bid path."""

    def test_requires_token(self, client):
        client.post("/auctions", json=auction_body())

        response = client.post(
            "/auctions/auc_live/bids",
            json={"vehicleId": "auc_live_veh_1", "amount": 1000, "currency": "EUR"},
        )

        assert response.status_code == 401
        assert response.json()["detail"]["kind"] == "unauthenticated"

    def test_bid_lifecycle(self, client, token):
        client.post("/auctions", json=auction_body())
        url = "/auctions/auc_live/bids"

        accepted = client.post(
            url,
            json={"vehicleId": "auc_live_veh_1", "amount": "1000", "currency": "eur"},
            headers=bearer(token("usr_alice")),
        )
        too_low = client.post(
            url,
            json={"vehicleId": "auc_live_veh_1", "amount": 1020, "currency": "EUR"},
            headers=bearer(token("usr_bob")),
        )
        wrong_currency = client.post(
            url,
            json={"vehicleId": "auc_live_veh_1", "amount": 5000, "currency": "USD"},
            headers=bearer(token("usr_bob")),
        )
        outbid = client.post(
            url,
            json={"vehicleId": "auc_live_veh_1", "amount": 1050, "currency": "EUR"},
            headers=bearer(token("usr_bob")),
        )

        assert accepted.status_code == 201
        assert accepted.json()["sequence"] == 1
        assert too_low.status_code == 409
        assert too_low.json()["detail"]["kind"] == "bid-too-low"
        assert wrong_currency.status_code == 422
        assert wrong_currency.json()["detail"]["kind"] == "currency-mismatch"
        assert outbid.status_code == 201
        assert outbid.json()["sequence"] == 2

        lot = client.get("/vehicles/auc_live_veh_1").json()
        assert lot["high_bid"]["bidder_id"] == "usr_bob"
        assert lot["bid_count"] == 2
        history = client.get("/vehicles/auc_live_veh_1/bids").json()
        assert [(b["sequence"], b["status"]) for b in history] == [
            (1, "accepted-outbid"),
            (2, "accepted-winning"),
        ]

    def test_invalid_amount(self, client, token):
        client.post("/auctions", json=auction_body())

        response = client.post(
            "/auctions/auc_live/bids",
            json={"vehicleId": "auc_live_veh_1", "amount": "lots", "currency": "EUR"},
            headers=bearer(token("usr_alice")),
        )

        assert response.status_code == 422
        assert response.json()["detail"]["kind"] == "invalid-event"

    def test_unknown_vehicle(self, client):
        assert client.get("/vehicles/nope").status_code == 404
        assert client.get("/vehicles/nope/bids").status_code == 404


class TestSocket:
    """The /ws endpoint authenticates, joins rooms and streams bid events."""

    def test_rejects_bad_token(self, client):
        with client.websocket_connect("/ws?token=forged") as ws:
            error = ws.receive_json()
            assert error["event"] == "bid-error"
            assert error["data"]["kind"] == "unauthenticated"
            with pytest.raises(WebSocketDisconnect) as excinfo:
                ws.receive_json()
        assert excinfo.value.code == 4401

    def test_join_and_bid(self, client, token):
        client.post("/auctions", json=auction_body())

        with client.websocket_connect(f"/ws?token={token('usr_alice')}") as alice:
            alice.send_json({"event": "join-auction", "data": {"auctionId": "auc_live"}})
            alice.send_json({"event": "ping", "ref": "sync", "data": {}})
            assert alice.receive_json()["ref"] == "sync"

            with client.websocket_connect(
                "/ws", headers=bearer(token("usr_bob"))
            ) as bob:
                bob.send_json({"event": "join-auction", "data": {"auctionId": "auc_live"}})
                joined = alice.receive_json()
                assert joined["event"] == "bidder-joined"
                assert joined["data"]["userId"] == "usr_bob"

                bob.send_json(
                    {
                        "event": "place-bid",
                        "ref": "b1",
                        "data": {
                            "auctionId": "auc_live",
                            "vehicleId": "auc_live_veh_2",
                            "amount": "2600",
                            "currency": "EUR",
                        },
                    }
                )
                seen = alice.receive_json()
                assert seen["event"] == "new-bid"
                assert seen["data"]["amount"] == "2600"
                assert seen["data"]["bidder"]["id"] == "usr_bob"

                bob_events = {bob.receive_json()["event"] for _ in range(2)}
                assert bob_events == {"bid-placed", "new-bid"}

            left = alice.receive_json()
            assert left["event"] == "bidder-left"
            assert left["data"]["userId"] == "usr_bob"
