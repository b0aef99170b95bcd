from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import uuid4

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request, WebSocket, status
from jsonschema import ValidationError

from .admin import config as admin_config
from .admin import health as admin_health
from .admin import rooms as admin_rooms
from .admin import stats as admin_stats
from .bidding.broker import BidBroker
from .bidding.errors import (
    BiddingError,
    CurrencyMismatch,
    InvalidEvent,
    Unauthenticated,
)
from .bidding.fsm import AuctionStatus
from .bidding.models import Auction, VehicleLot
from .bidding.scheduler import AuctionScheduler
from .config import ServerConfig, get_identities_path, get_server_config
from .events.gateway import SocketGateway
from .events.messages import BidError, BidPlaced, parse_amount
from .fanout.broadcaster import Broadcaster
from .identity.directory import IdentityDirectory
from .identity.tokens import Authenticator
from .rooms.connections import WebSocketConnection
from .rooms.registry import RoomRegistry
from .storage import AuctionStore, StoreError, build_store
from .transport.timestamps import TimestampError, parse_timestamp
from .validation.validator import SchemaRegistry, get_schema_registry

logger = logging.getLogger(__name__)

UNAUTHORIZED_CLOSE_CODE = 4401


@asynccontextmanager
async def lifespan(app: FastAPI):
    server_config = get_server_config()
    schema_registry = get_schema_registry()
    directory = IdentityDirectory(get_identities_path())
    authenticator = Authenticator(
        directory,
        server_config.auth.issuer_public_key,
        max_age_seconds=server_config.auth.token_max_age_seconds,
        max_skew_ms=server_config.auth.max_clock_skew_ms,
    )
    store = build_store(server_config.store)
    rooms = RoomRegistry()
    broadcaster = Broadcaster(rooms, send_timeout_ms=server_config.fanout.send_timeout_ms)
    scheduler = AuctionScheduler(
        store,
        broadcaster,
        sweep_interval_ms=server_config.scheduler.sweep_interval_ms,
    )
    broker = BidBroker(
        store,
        broadcaster,
        scheduler,
        allow_self_outbid=server_config.bidding.allow_self_outbid,
    )
    gateway = SocketGateway(authenticator, rooms, broadcaster, broker, store, schema_registry)

    app.state.server_config = server_config
    app.state.schema_registry = schema_registry
    app.state.identity_directory = directory
    app.state.authenticator = authenticator
    app.state.store = store
    app.state.rooms = rooms
    app.state.broadcaster = broadcaster
    app.state.scheduler = scheduler
    app.state.broker = broker
    app.state.gateway = gateway
    app.state.start_time = datetime.now(timezone.utc)

    scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()
        await broadcaster.close()
        await store.close()


app = FastAPI(
    title="Livebid Auction Broker",
    version="1.0.0",
    docs_url="/docs",
    lifespan=lifespan,
)

app.include_router(admin_health.router)
app.include_router(admin_stats.router)
app.include_router(admin_config.router)
app.include_router(admin_rooms.router)


# Dependency helpers ---------------------------------------------------------


def get_server_settings(request: Request) -> ServerConfig:
    return request.app.state.server_config


def get_schema_service(request: Request) -> SchemaRegistry:
    return request.app.state.schema_registry


def get_store(request: Request) -> AuctionStore:
    return request.app.state.store


def get_scheduler(request: Request) -> AuctionScheduler:
    return request.app.state.scheduler


def get_broker(request: Request) -> BidBroker:
    return request.app.state.broker


def get_authenticator(request: Request) -> Authenticator:
    return request.app.state.authenticator


# Routes ---------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root(settings: ServerConfig = Depends(get_server_settings)) -> dict[str, Any]:
    return {
        "service": "livebid",
        "version": app.version,
        "store_backend": settings.store.backend,
        "scheduler": {
            "sweep_interval_ms": settings.scheduler.sweep_interval_ms,
            "max_extensions": settings.scheduler.max_extensions,
        },
        "socket": {"path": "/ws", "channels": ["auction:<auctionId>", "user:<identityId>"]},
    }


@app.get("/ping", tags=["meta"])
async def ping() -> dict[str, Any]:
    return {"status": "ok", "version": app.version}


@app.post("/auctions", tags=["auctions"], status_code=status.HTTP_201_CREATED)
async def create_auction(
    payload: dict[str, Any] = Body(...),
    store: AuctionStore = Depends(get_store),
    schemas: SchemaRegistry = Depends(get_schema_service),
    scheduler: AuctionScheduler = Depends(get_scheduler),
    settings: ServerConfig = Depends(get_server_settings),
) -> dict[str, Any]:
    try:
        schemas.validate("auction_create", payload)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc.message)) from exc
    try:
        auction, lots = build_auction(payload, settings)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    try:
        await store.create_auction(auction, lots)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    auction = await scheduler.refresh(auction.auction_id)
    return {**auction.to_dict(), "vehicles": [lot.to_dict() for lot in lots]}


@app.get("/auctions/{auction_id}", tags=["auctions"])
async def get_auction(auction_id: str, store: AuctionStore = Depends(get_store)) -> dict[str, Any]:
    auction = await _load_auction(store, auction_id)
    return auction.to_dict()


@app.post("/auctions/{auction_id}/cancel", tags=["auctions"])
async def cancel_auction(
    auction_id: str,
    store: AuctionStore = Depends(get_store),
    scheduler: AuctionScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    await _load_auction(store, auction_id)
    try:
        auction = await scheduler.cancel(auction_id)
    except BiddingError as exc:
        raise HTTPException(status_code=409, detail=_error_detail(exc)) from exc
    return auction.to_dict()


@app.post("/auctions/{auction_id}/bids", tags=["bidding"], status_code=status.HTTP_201_CREATED)
async def place_bid(
    auction_id: str,
    payload: dict[str, Any] = Body(...),
    authorization: str | None = Header(default=None),
    authenticator: Authenticator = Depends(get_authenticator),
    broker: BidBroker = Depends(get_broker),
) -> dict[str, Any]:
    try:
        identity = authenticator.authenticate(bearer_token(authorization))
        vehicle_id = payload.get("vehicleId")
        currency = payload.get("currency")
        if not isinstance(vehicle_id, str) or not vehicle_id:
            raise InvalidEvent("vehicleId is required")
        if not isinstance(currency, str) or len(currency) != 3:
            raise InvalidEvent("currency must be an ISO 4217 code")
        decision = await broker.place_bid(
            identity,
            auction_id,
            vehicle_id,
            parse_amount(payload.get("amount")),
            currency.upper(),
        )
    except BiddingError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=_error_detail(exc)) from exc
    return BidPlaced(decision.bid).payload()


@app.get("/vehicles/{vehicle_id}", tags=["bidding"])
async def get_vehicle_lot(vehicle_id: str, store: AuctionStore = Depends(get_store)) -> dict[str, Any]:
    try:
        lot = await store.get_lot(vehicle_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"vehicle {vehicle_id} not found") from exc
    return lot.to_dict()


@app.get("/vehicles/{vehicle_id}/bids", tags=["bidding"])
async def list_vehicle_bids(vehicle_id: str, store: AuctionStore = Depends(get_store)) -> list[dict[str, Any]]:
    try:
        await store.get_lot(vehicle_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"vehicle {vehicle_id} not found") from exc
    return [bid.to_dict() for bid in await store.list_bids(vehicle_id)]


@app.websocket("/ws")
async def auction_socket(websocket: WebSocket) -> None:
    gateway: SocketGateway = websocket.app.state.gateway
    token = websocket.query_params.get("token") or bearer_token(websocket.headers.get("authorization"))
    connection = WebSocketConnection(websocket)
    await websocket.accept()
    try:
        gateway.connect(connection, token)
    except Unauthenticated as exc:
        logger.info("rejected socket connection: %s", exc.message)
        await connection.send(BidError(kind=exc.kind, message=exc.message).to_message())
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE, reason=exc.message)
        return
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            await gateway.handle_frame(connection, raw)
    finally:
        await gateway.disconnect(connection)


# Helpers --------------------------------------------------------------------


def bearer_token(header: str | None) -> str | None:
    if not header:
        return None
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value:
        return None
    return value.strip()


def build_auction(payload: dict[str, Any], settings: ServerConfig) -> tuple[Auction, list[VehicleLot]]:
    """Map an auction-creation body onto the auction record and its vehicle lots."""
    auction_id = payload.get("auction_id") or f"auc_{uuid4().hex}"
    try:
        start_time = parse_timestamp(payload["start_time"])
        end_time = parse_timestamp(payload["end_time"])
    except TimestampError as exc:
        raise ValueError(str(exc)) from exc
    if end_time <= start_time:
        raise ValueError("end_time must be after start_time")
    vehicles = payload["vehicles"]
    vehicle_ids = [vehicle["vehicle_id"] for vehicle in vehicles]
    if len(set(vehicle_ids)) != len(vehicle_ids):
        raise ValueError("vehicle ids must be unique within an auction")
    max_extensions = payload.get("max_extensions", settings.scheduler.max_extensions)
    auction = Auction(
        auction_id=auction_id,
        title=payload.get("title", ""),
        status=AuctionStatus.UPCOMING,
        start_time=start_time,
        end_time=end_time,
        currency=str(payload.get("currency") or settings.bidding.default_currency).upper(),
        extend_window=timedelta(seconds=float(payload.get("extend_window_seconds", 0))),
        extend_by=timedelta(seconds=float(payload.get("extend_by_seconds", 0))),
        vehicle_ids=tuple(vehicle_ids),
        max_extensions=max_extensions,
    )
    lots = [
        VehicleLot(
            vehicle_id=vehicle["vehicle_id"],
            auction_id=auction_id,
            starting_price=_money(vehicle["starting_price"], "starting_price"),
            min_increment=_money(vehicle["min_increment"], "min_increment"),
            reserve_price=(
                _money(vehicle["reserve_price"], "reserve_price")
                if vehicle.get("reserve_price") is not None
                else None
            ),
        )
        for vehicle in vehicles
    ]
    for lot in lots:
        if lot.min_increment <= 0:
            raise ValueError(f"min_increment for {lot.vehicle_id} must be positive")
    return auction, lots


def _money(value: Any, field: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{field} is not a number") from exc
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"{field} must be a non-negative number")
    return amount


async def _load_auction(store: AuctionStore, auction_id: str) -> Auction:
    try:
        return await store.get_auction(auction_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"auction {auction_id} not found") from exc


def _status_for(exc: BiddingError) -> int:
    if isinstance(exc, Unauthenticated):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, (InvalidEvent, CurrencyMismatch)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    return status.HTTP_409_CONFLICT


def _error_detail(exc: BiddingError) -> dict[str, str]:
    return {"kind": exc.kind, "message": exc.message}


def run() -> None:
    import uvicorn

    listen = get_server_config().listen
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host=listen.get("host", "0.0.0.0"), port=int(listen.get("port", 8080)))


if __name__ == "__main__":
    run()
