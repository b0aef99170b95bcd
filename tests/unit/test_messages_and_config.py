"""Unit tests for frame parsing, outbound payloads and YAML configuration loading."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from conftest import NOW, make_lot
from livebid.bidding.errors import InvalidEvent
from livebid.bidding.models import HighBid
from livebid.config import load_server_config
from livebid.events.messages import JoinAuction, PlaceBid, VehicleSold, parse_amount, parse_inbound
from livebid.validation.validator import get_schema_registry


@pytest.fixture
def schemas():
    return get_schema_registry()


class TestInboundFrames:
    """Frames become typed events or InvalidEvent."""

    def test_place_bid(self, schemas):
        frame = {
            "event": "place-bid",
            "ref": "r1",
            "data": {"auctionId": "a", "vehicleId": "v", "amount": 1050.5, "currency": "eur"},
        }

        event, ref = parse_inbound(frame, schemas)

        assert event == PlaceBid(auction_id="a", vehicle_id="v", amount=Decimal("1050.5"), currency="EUR")
        assert ref == "r1"

    def test_join(self, schemas):
        event, ref = parse_inbound({"event": "join-auction", "data": {"auctionId": "a"}}, schemas)

        assert event == JoinAuction(auction_id="a")
        assert ref is None

    @pytest.mark.parametrize(
        "frame",
        [
            [],
            {"event": "join-auction"},
            {"event": "join-auction", "data": {"auctionId": "a", "extra": 1}},
            {"event": "place-bid", "data": {"auctionId": "a", "vehicleId": "v", "amount": 5, "currency": "EURO"}},
            {"event": "place-bid", "data": {"auctionId": "a", "vehicleId": "v", "amount": "1e3", "currency": "EUR"}},
        ],
    )
    def test_rejected_frames(self, schemas, frame):
        with pytest.raises(InvalidEvent):
            parse_inbound(frame, schemas)

    @pytest.mark.parametrize("value", ["0", "-1", "NaN", "Infinity", None, "ten"])
    def test_parse_amount_rejects(self, value):
        with pytest.raises(InvalidEvent):
            parse_amount(value)

    def test_schema_names(self, schemas):
        assert {"auction_create", "join_auction", "leave_auction", "place_bid"} <= set(schemas.names)


class TestOutboundFrames:
    """Outbound events render their payloads."""

    def test_vehicle_sold_names_the_winning_bid(self):
        winning = HighBid(
            bid_id="bid_7",
            bidder_id="usr_alice",
            amount=Decimal("1500"),
            currency="EUR",
            sequence=3,
            placed_at=NOW,
        )
        lot = replace(make_lot(reserve_price="1500"), high_bid=winning, bid_count=3)

        message = VehicleSold(lot, winning).to_message()

        assert message == {
            "event": "vehicle-sold",
            "data": {
                "auctionId": "auc_1",
                "vehicleId": "veh_1",
                "bidId": "bid_7",
                "winnerId": "usr_alice",
                "amount": "1500",
                "currency": "EUR",
                "bidCount": 3,
            },
        }


class TestServerConfig:
    """YAML config maps onto frozen dataclasses with defaults."""

    def test_defaults(self, tmp_path):
        path = tmp_path / "server.yaml"
        path.write_text("store:\n  backend: in_memory\n")

        config = load_server_config(path)

        assert config.auth.issuer_public_key == ""
        assert config.bidding.allow_self_outbid is False
        assert config.bidding.default_currency == "EUR"
        assert config.scheduler.max_extensions is None
        assert config.fanout.send_timeout_ms == 2000

    def test_issuer_key_path_is_relative_to_file(self, tmp_path, issuer_keys):
        _, public_pem = issuer_keys
        (tmp_path / "keys").mkdir()
        (tmp_path / "keys" / "issuer.pem").write_text(public_pem)
        path = tmp_path / "server.yaml"
        path.write_text(
            "auth:\n  issuer_public_key_path: keys/issuer.pem\n"
            "bidding:\n  default_currency: usd\n  allow_self_outbid: true\n"
            "scheduler:\n  max_extensions: 5\n"
            "store:\n  backend: redis\n  options:\n    url: redis://cache:6379/1\n"
        )

        config = load_server_config(path)

        assert config.auth.issuer_public_key == public_pem
        assert config.bidding.default_currency == "USD"
        assert config.bidding.allow_self_outbid is True
        assert config.scheduler.max_extensions == 5
        assert config.store.options == {"url": "redis://cache:6379/1"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_server_config(tmp_path / "absent.yaml")
