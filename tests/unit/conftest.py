"""Shared fixtures: issuer keys, identities, fake connections and seeded auctions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from livebid.bidding.fsm import AuctionStatus
from livebid.bidding.models import Auction, Identity, VehicleLot
from livebid.identity.directory import IdentityDirectory
from livebid.storage.in_memory import InMemoryStore

NOW = datetime(2026, 3, 14, 12, 0, 0, tzinfo=timezone.utc)

IDENTITIES_YAML = """\
identities:
  - id: usr_alice
    name: Alice Martin
    email: alice@example.com
    role: dealer
    company: Martin Autos
  - id: usr_bob
    name: Bob Stone
    email: bob@example.com
    role: dealer
    company: Stone Cars
  - id: usr_carol
    name: Carol Vey
    email: carol@example.com
    role: dealer
  - id: usr_suspended
    name: Sam Pending
    active: false
"""


class FakeConnection:
    """Records every frame sent to it; ``fail`` makes ``send`` raise."""

    def __init__(self, connection_id: str, identity: Identity | None = None, *, fail: bool = False) -> None:
        self.connection_id = connection_id
        self.identity = identity
        self.fail = fail
        self.messages: list[dict[str, Any]] = []

    async def send(self, message: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.messages.append(message)

    def events(self, name: str | None = None) -> list[dict[str, Any]]:
        if name is None:
            return list(self.messages)
        return [message for message in self.messages if message["event"] == name]


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_auction(
    auction_id: str = "auc_1",
    *,
    status: AuctionStatus = AuctionStatus.ACTIVE,
    start_time: datetime | None = None,
    end_time: datetime | None = None,
    vehicle_ids: tuple[str, ...] = ("veh_1",),
    extend_window: timedelta = timedelta(minutes=2),
    extend_by: timedelta = timedelta(minutes=2),
    max_extensions: int | None = None,
    currency: str = "EUR",
) -> Auction:
    return Auction(
        auction_id=auction_id,
        status=status,
        start_time=start_time or NOW - timedelta(hours=1),
        end_time=end_time or NOW + timedelta(hours=1),
        currency=currency,
        extend_window=extend_window,
        extend_by=extend_by,
        vehicle_ids=vehicle_ids,
        max_extensions=max_extensions,
    )


def make_lot(
    vehicle_id: str = "veh_1",
    auction_id: str = "auc_1",
    *,
    starting_price: str = "1000",
    min_increment: str = "50",
    reserve_price: str | None = None,
) -> VehicleLot:
    return VehicleLot(
        vehicle_id=vehicle_id,
        auction_id=auction_id,
        starting_price=Decimal(starting_price),
        min_increment=Decimal(min_increment),
        reserve_price=Decimal(reserve_price) if reserve_price is not None else None,
    )


@pytest.fixture
def issuer_keys() -> tuple[str, str]:
    private_key = Ed25519PrivateKey.generate()
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


@pytest.fixture
def identities_path(tmp_path: Path) -> Path:
    path = tmp_path / "identities.yaml"
    path.write_text(IDENTITIES_YAML)
    return path


@pytest.fixture
def directory(identities_path: Path) -> IdentityDirectory:
    return IdentityDirectory(identities_path)


@pytest.fixture
def alice(directory: IdentityDirectory) -> Identity:
    return directory.get("usr_alice")


@pytest.fixture
def bob(directory: IdentityDirectory) -> Identity:
    return directory.get("usr_bob")


@pytest.fixture
def carol(directory: IdentityDirectory) -> Identity:
    return directory.get("usr_carol")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
