"""HTTP client for the central record store (the hub).

The gateway is a pure boundary adapter: one request per call, a fixed
timeout, no retries and no local persistence. Every transport failure or
non-success response is raised as RemoteError.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from shared.errors import RemoteError
from shared.records import ActorRole, Tournament, TournamentStatus
from sync.collections import CollectionName

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 10.0

# Path segment used when listing tournament-owned records across every tournament.
ALL_TOURNAMENTS = "all"


@dataclass(frozen=True)
class _Routes:
    base: str
    # Tournament-owned collections listed under /api/tournaments/{id}/<nested>.
    nested: str | None = None
    # Tournament-owned collections filtered with ?tournamentId=.
    filtered: bool = False


_ROUTES: dict[CollectionName, _Routes] = {
    CollectionName.TOURNAMENTS: _Routes("/api/tournaments"),
    CollectionName.TEAMS: _Routes("/api/teams", nested="teams"),
    CollectionName.MATCHES: _Routes("/api/matches", nested="matches"),
    CollectionName.PENDING_SUBMISSIONS: _Routes("/api/pending-submissions", filtered=True),
    CollectionName.SCORE_ADJUSTMENTS: _Routes("/api/score-adjustments", filtered=True),
    CollectionName.MANAGERS: _Routes("/api/managers"),
    CollectionName.AUDIT_LOGS: _Routes("/api/audit-logs", filtered=True),
}

_ENTITY_KEYS: dict[CollectionName, str] = {
    CollectionName.TOURNAMENTS: "tournament",
    CollectionName.TEAMS: "team",
    CollectionName.MATCHES: "match",
    CollectionName.PENDING_SUBMISSIONS: "pendingSubmission",
    CollectionName.SCORE_ADJUSTMENTS: "scoreAdjustment",
    CollectionName.MANAGERS: "manager",
    CollectionName.AUDIT_LOGS: "auditLog",
}


@dataclass(frozen=True)
class LoginResult:
    role: ActorRole
    identifier: str
    tournament_id: str | None = None


@dataclass
class ReconcileReport:
    synced: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


class RemoteStoreGateway:
    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            raise RemoteError(f"Request timed out: {method} {path}") from e
        except httpx.RequestError as e:
            raise RemoteError("Network error: Unable to connect to server") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success:
            message = body.get("error") if isinstance(body, dict) else None
            logger.warning("hub request failed", method=method, path=path, status=response.status_code)
            raise RemoteError(message or f"HTTP {response.status_code}", status=response.status_code)

        if not isinstance(body, dict):
            raise RemoteError(f"Unexpected response body from {method} {path}", status=response.status_code)
        return body

    def _list_path(self, collection: CollectionName, tournament_id: str | None) -> tuple[str, dict[str, Any]]:
        routes = _ROUTES[collection]
        if routes.nested is not None:
            return f"/api/tournaments/{tournament_id or ALL_TOURNAMENTS}/{routes.nested}", {}
        if routes.filtered and tournament_id is not None:
            return routes.base, {"tournamentId": tournament_id}
        return routes.base, {}

    async def list(
        self,
        collection: CollectionName,
        tournament_id: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        path, params = self._list_path(collection, tournament_id)
        if limit is not None:
            params["limit"] = limit
        body = await self._request("GET", path, params=params or None)
        items = body.get(collection.value)
        if not isinstance(items, list):
            raise RemoteError(f"Response is missing the {collection.value!r} list")
        return [item for item in items if isinstance(item, dict)]

    async def create(self, collection: CollectionName, record: dict[str, Any]) -> dict[str, Any] | None:
        body = await self._request("POST", _ROUTES[collection].base, json=record)
        return body.get(_ENTITY_KEYS[collection])

    async def update(
        self,
        collection: CollectionName,
        record_id: str,
        record: dict[str, Any],
    ) -> dict[str, Any] | None:
        body = await self._request("PUT", f"{_ROUTES[collection].base}/{record_id}", json=record)
        return body.get(_ENTITY_KEYS[collection])

    async def delete(self, collection: CollectionName, record_id: str) -> None:
        await self._request("DELETE", f"{_ROUTES[collection].base}/{record_id}")

    async def reconcile_archived(self, tournaments: Iterable[Tournament]) -> ReconcileReport:
        """Push archived tournaments to the hub, updating first and creating on failure.

        Only archived tournaments are sent; operational collections are never
        bulk-synced here because their records live on inside archivedData.
        A tournament that fails both calls is logged and skipped.
        """
        report = ReconcileReport()
        archived = [t for t in tournaments if t.status == TournamentStatus.ARCHIVED]
        logger.info("reconciling archived tournaments", count=len(archived))

        for tournament in archived:
            payload = tournament.to_wire()
            try:
                await self.update(CollectionName.TOURNAMENTS, tournament.id, payload)
            except RemoteError as update_error:
                try:
                    await self.create(CollectionName.TOURNAMENTS, payload)
                except RemoteError as create_error:
                    logger.warning(
                        "archived tournament sync failed",
                        tournament_id=tournament.id,
                        update_error=str(update_error),
                        create_error=str(create_error),
                    )
                    report.failed.append(tournament.id)
                    continue
            report.synced.append(tournament.id)

        return report

    async def login(self, code: str, role: ActorRole) -> LoginResult:
        body = await self._request("POST", "/api/auth/login", json={"code": code, "type": role.value})
        try:
            return LoginResult(
                role=ActorRole(body["userType"]),
                identifier=str(body["identifier"]),
                tournament_id=body.get("tournamentId"),
            )
        except (KeyError, ValueError) as e:
            raise RemoteError("Malformed login response") from e

    async def health(self) -> bool:
        try:
            body = await self._request("GET", "/api/health")
        except RemoteError:
            return False
        return body.get("status") == "ok"
