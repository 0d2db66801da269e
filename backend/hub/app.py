from __future__ import annotations

import contextlib
import json
from dataclasses import dataclass
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

import structlog
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from hub.events import ALL_TOURNAMENTS, EventHub
from hub.settings import HubSettings
from hub.store import ArchivedRecordError, DuplicateRecordError, RecordNotFoundError, RecordStore
from hub.websocket import events_websocket
from shared.build_info import APP_VERSION, GIT_COMMIT
from shared.errors import ValidationError
from shared.logging import setup_logging
from shared.records import ActorRole, TournamentStatus
from sync.collections import COLLECTION_SPECS, CollectionName, EventKind

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable

    from starlette.requests import Request

    Handler = Callable[[Request], Awaitable[JSONResponse]]


@dataclass(frozen=True)
class _CollectionRoutes:
    collection: CollectionName
    base: str
    nested: str | None = None  # listed under /api/tournaments/{tournament_id}/<nested>
    updatable: bool = True


_COLLECTION_ROUTES = (
    _CollectionRoutes(CollectionName.TOURNAMENTS, "/api/tournaments"),
    _CollectionRoutes(CollectionName.TEAMS, "/api/teams", nested="teams"),
    _CollectionRoutes(CollectionName.MATCHES, "/api/matches", nested="matches"),
    _CollectionRoutes(CollectionName.PENDING_SUBMISSIONS, "/api/pending-submissions", updatable=False),
    _CollectionRoutes(CollectionName.SCORE_ADJUSTMENTS, "/api/score-adjustments", updatable=False),
    _CollectionRoutes(CollectionName.MANAGERS, "/api/managers"),
    _CollectionRoutes(CollectionName.AUDIT_LOGS, "/api/audit-logs", updatable=False),
)


def _error(message: str, status: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status)


async def _read_json(request: Request) -> dict[str, Any]:
    raw_body = await request.body()
    if not raw_body or raw_body.strip() == b"":
        return {}
    try:
        body = json.loads(raw_body)
    except ValueError as e:
        raise ValidationError("Invalid JSON body") from e
    if not isinstance(body, dict):
        raise ValidationError("JSON body must be an object")
    return body


def _parse_limit(request: Request) -> int | None:
    raw = request.query_params.get("limit")
    settings: HubSettings = request.app.state.settings
    if raw is None:
        if request.url.path.startswith("/api/audit-logs"):
            return settings.audit_log_default_limit
        return None
    try:
        limit = int(raw)
    except ValueError as e:
        raise ValidationError(f"Invalid limit: {raw!r}") from e
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    return min(limit, settings.audit_log_max_limit)


def _list_handler(collection: CollectionName, *, nested: bool) -> Handler:
    async def handler(request: Request) -> JSONResponse:
        store: RecordStore = request.app.state.store
        if nested:
            tournament_id = request.path_params["tournament_id"]
            if tournament_id == ALL_TOURNAMENTS:
                tournament_id = None
        else:
            tournament_id = request.query_params.get("tournamentId") or None
        records = await store.list(collection, tournament_id, _parse_limit(request))
        return JSONResponse({"success": True, collection.value: records})

    return handler


def _create_handler(collection: CollectionName) -> Handler:
    entity = COLLECTION_SPECS[collection].entity

    async def handler(request: Request) -> JSONResponse:
        store: RecordStore = request.app.state.store
        events: EventHub = request.app.state.event_hub
        record = await store.create(collection, await _read_json(request))
        await events.publish(collection, EventKind.CREATED, record)
        return JSONResponse({"success": True, entity: record}, status_code=HTTPStatus.CREATED)

    return handler


def _update_handler(collection: CollectionName) -> Handler:
    entity = COLLECTION_SPECS[collection].entity

    async def handler(request: Request) -> JSONResponse:
        store: RecordStore = request.app.state.store
        events: EventHub = request.app.state.event_hub
        record = await store.update(collection, request.path_params["record_id"], await _read_json(request))
        await events.publish(collection, EventKind.UPDATED, record)
        return JSONResponse({"success": True, entity: record})

    return handler


def _delete_handler(collection: CollectionName) -> Handler:
    entity = COLLECTION_SPECS[collection].entity

    async def handler(request: Request) -> JSONResponse:
        store: RecordStore = request.app.state.store
        events: EventHub = request.app.state.event_hub
        record = await store.delete(collection, request.path_params["record_id"])
        await events.publish(collection, EventKind.DELETED, record)
        return JSONResponse({"success": True, entity: record})

    return handler


async def delete_tournament(request: Request) -> JSONResponse:
    store: RecordStore = request.app.state.store
    events: EventHub = request.app.state.event_hub
    removed = await store.delete_tournament(request.path_params["record_id"])
    for collection, records in removed.items():
        for record in records:
            await events.publish(collection, EventKind.DELETED, record)
    tournament = removed[CollectionName.TOURNAMENTS][0]
    return JSONResponse({"success": True, "tournament": tournament})


async def login(request: Request) -> JSONResponse:
    body = await _read_json(request)
    code = str(body.get("code", "")).strip()
    if not code:
        raise ValidationError("Access code is required")

    settings: HubSettings = request.app.state.settings
    store: RecordStore = request.app.state.store

    if any(code.lower() == admin.lower() for admin in settings.admin_codes):
        return JSONResponse({"success": True, "userType": ActorRole.ADMIN.value, "identifier": "admin"})

    manager = await store.get(CollectionName.MANAGERS, code.upper())
    if manager is not None and manager.get("isActive", True):
        tournaments = await store.list(CollectionName.TOURNAMENTS)
        assigned = next(
            (
                t
                for t in tournaments
                if t.get("status") == TournamentStatus.ACTIVE and manager["code"] in t.get("assignedManagers", [])
            ),
            None,
        )
        return JSONResponse(
            {
                "success": True,
                "userType": ActorRole.MANAGER.value,
                "identifier": manager["code"],
                "tournamentId": assigned["id"] if assigned else None,
            },
        )

    team = await store.get(CollectionName.TEAMS, code.upper())
    if team is not None:
        tournament = await store.get(CollectionName.TOURNAMENTS, team["tournamentId"])
        if tournament is not None and tournament.get("status") == TournamentStatus.ACTIVE:
            return JSONResponse(
                {
                    "success": True,
                    "userType": ActorRole.TEAM.value,
                    "identifier": team["code"],
                    "tournamentId": team["tournamentId"],
                },
            )

    logger.info("login rejected", role_hint=body.get("type"))
    return _error("Invalid access code", HTTPStatus.UNAUTHORIZED)


async def health(request: Request) -> JSONResponse:
    events: EventHub = request.app.state.event_hub
    return JSONResponse(
        {
            "status": "ok",
            "version": APP_VERSION,
            "commit": GIT_COMMIT,
            "connections": events.connection_count,
        },
    )


async def _validation_error(_request: Request, exc: Exception) -> JSONResponse:
    return _error(str(exc), HTTPStatus.UNPROCESSABLE_ENTITY)


async def _not_found(_request: Request, exc: Exception) -> JSONResponse:
    return _error(str(exc), HTTPStatus.NOT_FOUND)


async def _conflict(_request: Request, exc: Exception) -> JSONResponse:
    return _error(str(exc), HTTPStatus.CONFLICT)


async def _server_error(request: Request, _exc: Exception) -> JSONResponse:
    logger.exception("unhandled hub error", path=request.url.path)
    return _error("Internal server error", HTTPStatus.INTERNAL_SERVER_ERROR)


def _build_routes() -> list[Route | WebSocketRoute]:
    routes: list[Route | WebSocketRoute] = [
        Route("/api/health", health, methods=["GET"], name="health"),
        Route("/api/auth/login", login, methods=["POST"], name="login"),
        WebSocketRoute("/ws", events_websocket, name="events_websocket"),
    ]
    for spec in _COLLECTION_ROUTES:
        name = spec.collection.value
        if spec.nested is not None:
            routes.append(
                Route(
                    f"/api/tournaments/{{tournament_id}}/{spec.nested}",
                    _list_handler(spec.collection, nested=True),
                    methods=["GET"],
                    name=f"list_{name}",
                ),
            )
        else:
            routes.append(
                Route(spec.base, _list_handler(spec.collection, nested=False), methods=["GET"], name=f"list_{name}"),
            )
        routes.append(Route(spec.base, _create_handler(spec.collection), methods=["POST"], name=f"create_{name}"))
        if spec.updatable:
            routes.append(
                Route(
                    f"{spec.base}/{{record_id}}",
                    _update_handler(spec.collection),
                    methods=["PUT"],
                    name=f"update_{name}",
                ),
            )
        if spec.collection == CollectionName.TOURNAMENTS:
            delete: Handler = delete_tournament
        else:
            delete = _delete_handler(spec.collection)
        routes.append(Route(f"{spec.base}/{{record_id}}", delete, methods=["DELETE"], name=f"delete_{name}"))
    return routes


def create_app(
    settings: HubSettings | None = None,
    store: RecordStore | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = HubSettings()
    if store is None:
        store = RecordStore(settings.database_path)
        store.connect()

    event_hub = EventHub()

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncGenerator[None]:
        yield
        store.close()

    app = Starlette(
        routes=_build_routes(),
        lifespan=lifespan,
        exception_handlers={
            ValidationError: _validation_error,
            RecordNotFoundError: _not_found,
            DuplicateRecordError: _conflict,
            ArchivedRecordError: _conflict,
            Exception: _server_error,
        },
    )
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type"],
    )

    app.state.settings = settings
    app.state.store = store
    app.state.event_hub = event_hub

    logger.info("hub server ready", database=settings.database_path)
    return app


def get_app() -> Starlette:  # pragma: no cover
    """Factory function for uvicorn --factory hub.app:get_app."""
    s = HubSettings()
    setup_logging(log_dir=s.log_dir)
    return create_app(settings=s)
