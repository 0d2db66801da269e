"""One client execution context wired from SyncSettings.

A ClientSession owns whatever it had to create (cache, gateway, channel)
and borrows whatever it was handed. Sessions on the same device share a
BroadcastBus and a LocalCacheStore so they converge without the hub.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Self

import structlog

from shared.logging import client_log_context
from shared.records import ActorRole, new_record_id
from standings.engine import standings_for_tournament
from sync.binder import CollectionBinder
from sync.broadcast import (
    GLOBAL_CHANNEL,
    TEAM_CREATED,
    TOURNAMENT_CREATED,
    TOURNAMENT_DELETED,
    TOURNAMENT_TERMINATED,
    BroadcastBus,
)
from sync.cache import LocalCacheStore
from sync.channel import RealtimeChannel
from sync.collections import COLLECTION_SPECS, TOURNAMENT_OWNED, CollectionName
from sync.gateway import RemoteStoreGateway
from sync.operations import SyncOperations
from sync.settings import SyncSettings
from tournament.auth import authenticate
from tournament.workflows import TournamentWorkflows

if TYPE_CHECKING:
    from collections.abc import Iterable
    from types import TracebackType

    from standings.engine import RankedTeam
    from sync.broadcast import BroadcastChannel
    from sync.gateway import LoginResult

logger = structlog.get_logger()

ALL_TOURNAMENTS = "all"

# Global messages and the collections they make stale.
_STALE_ON: dict[str, tuple[CollectionName, ...]] = {
    TOURNAMENT_CREATED: (CollectionName.TOURNAMENTS,),
    TEAM_CREATED: (CollectionName.TEAMS,),
    TOURNAMENT_TERMINATED: tuple(CollectionName),
    TOURNAMENT_DELETED: tuple(CollectionName),
}


class ClientSession:
    def __init__(
        self,
        settings: SyncSettings | None = None,
        *,
        bus: BroadcastBus | None = None,
        cache: LocalCacheStore | None = None,
        gateway: RemoteStoreGateway | None = None,
        channel: RealtimeChannel | None = None,
        tournament_id: str | None = None,
    ) -> None:
        if settings is None:  # pragma: no cover
            settings = SyncSettings()
        self._settings = settings
        self._tournament_id = tournament_id
        self._client_id = new_record_id("client")

        self._owned_cache = cache is None
        self._owned_gateway = gateway is None
        self._owned_channel = channel is None

        if cache is None:
            cache = LocalCacheStore(settings.cache_path)
            cache.open()
        if gateway is None:
            gateway = RemoteStoreGateway(settings.api_url, timeout=settings.request_timeout_seconds)
        if channel is None:
            channel = RealtimeChannel(
                settings.resolved_socket_url,
                reconnect_attempts=settings.reconnect_attempts,
                reconnect_delay=settings.reconnect_delay_seconds,
                reconnect_delay_max=settings.reconnect_delay_max_seconds,
            )

        self._bus = bus or BroadcastBus()
        self._cache = cache
        self._gateway = gateway
        self._channel = channel
        self._ops = SyncOperations(cache, self._bus)
        self._binders = {
            name: CollectionBinder(
                spec,
                gateway,
                cache,
                self._bus,
                channel=channel,
                poll_interval=settings.poll_interval_seconds,
                tournament_id=tournament_id if name in TOURNAMENT_OWNED else None,
            )
            for name, spec in COLLECTION_SPECS.items()
        }
        self._workflows: list[TournamentWorkflows] = []
        self._global: BroadcastChannel | None = None
        self._pending: set[asyncio.Task[Any]] = set()
        self._started = False
        self._closed = False

    @property
    def settings(self) -> SyncSettings:
        return self._settings

    @property
    def gateway(self) -> RemoteStoreGateway:
        return self._gateway

    @property
    def channel(self) -> RealtimeChannel:
        return self._channel

    @property
    def ops(self) -> SyncOperations:
        return self._ops

    @property
    def binders(self) -> dict[CollectionName, CollectionBinder]:
        return dict(self._binders)

    def binder(self, name: CollectionName) -> CollectionBinder:
        return self._binders[name]

    async def start(self) -> None:
        if self._started:
            return
        self._started = True

        self._global = self._bus.channel(GLOBAL_CHANNEL)
        self._global.subscribe(self._on_global)

        # Channel and binder tasks inherit the client binding.
        with client_log_context(self._client_id, tournament_id=self._tournament_id):
            self._channel.start()
            await self._channel.join(self._tournament_id or ALL_TOURNAMENTS)
            await asyncio.gather(*(binder.start() for binder in self._binders.values()))
            logger.info("client session started")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        for workflows in self._workflows:
            workflows.close()
        self._workflows.clear()
        if self._global is not None:
            self._global.close()
            self._global = None

        for task in self._pending:
            task.cancel()
        await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()

        for binder in reversed(list(self._binders.values())):
            await binder.close()
        self._ops.close()

        if self._owned_channel:
            await self._channel.stop()
        if self._owned_gateway:
            await self._gateway.aclose()
        if self._owned_cache:
            self._cache.close()
        logger.info("client session closed", tournament_id=self._tournament_id)

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def workflows(self, actor: str = "admin", actor_role: ActorRole = ActorRole.ADMIN) -> TournamentWorkflows:
        workflows = TournamentWorkflows(
            self._binders,
            self._ops,
            self._gateway,
            actor=actor,
            actor_role=actor_role,
            audit_log_limit=self._settings.audit_log_limit,
        )
        self._workflows.append(workflows)
        return workflows

    def standings(self, tournament_id: str) -> list[RankedTeam]:
        """Current leaderboard of one tournament, empty when the tournament is unknown."""
        tournament = self._binders[CollectionName.TOURNAMENTS].get(tournament_id)
        if tournament is None:
            return []
        return standings_for_tournament(
            tournament,
            self._binders[CollectionName.TEAMS].records(),
            self._binders[CollectionName.MATCHES].records(),
            self._binders[CollectionName.SCORE_ADJUSTMENTS].records(),
        )

    async def login(self, code: str, role_hint: ActorRole, admin_codes: Iterable[str] = ()) -> LoginResult | None:
        return await authenticate(
            code,
            role_hint,
            admin_codes=admin_codes,
            managers=self._binders[CollectionName.MANAGERS].records(),
            teams=self._binders[CollectionName.TEAMS].records(),
            tournaments=self._binders[CollectionName.TOURNAMENTS].records(),
            gateway=self._gateway,
        )

    def _on_global(self, message: dict[str, Any]) -> None:
        if self._closed:
            return
        stale = _STALE_ON.get(message.get("type", ""))
        if not stale:
            return
        logger.debug("global sync message", type=message["type"], tournament_id=message.get("tournamentId"))
        for name in stale:
            task = asyncio.create_task(self._binders[name].reconcile())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
