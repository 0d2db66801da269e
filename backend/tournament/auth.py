"""Access-code login.

Codes are matched case-insensitively against the locally known tables
first (admin codes, active managers, teams of active tournaments). The hub
is only asked when nothing local matches, so login keeps working offline
for every code this device has already seen.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

import structlog

from shared.errors import RemoteError
from shared.records import ActorRole
from sync.gateway import LoginResult

if TYPE_CHECKING:
    from collections.abc import Iterable

    from shared.records import Manager, Team, Tournament
    from sync.gateway import RemoteStoreGateway

logger = structlog.get_logger()


def _same_code(candidate: str, code: str) -> bool:
    return secrets.compare_digest(candidate.lower().encode(), code.lower().encode())


def match_local(
    code: str,
    *,
    admin_codes: Iterable[str],
    managers: Iterable[Manager],
    teams: Iterable[Team],
    tournaments: Iterable[Tournament],
) -> LoginResult | None:
    tournaments = list(tournaments)

    for admin_code in admin_codes:
        if _same_code(code, admin_code):
            return LoginResult(role=ActorRole.ADMIN, identifier="admin")

    for manager in managers:
        if manager.is_active and _same_code(code, manager.code):
            assigned = next(
                (t for t in tournaments if t.is_active and manager.code in t.assigned_managers),
                None,
            )
            return LoginResult(
                role=ActorRole.MANAGER,
                identifier=manager.code,
                tournament_id=assigned.id if assigned is not None else None,
            )

    active = {t.id for t in tournaments if t.is_active}
    for team in teams:
        if _same_code(code, team.code):
            if team.tournament_id not in active:
                logger.info("team login refused, tournament not active", team_code=team.code)
                return None
            return LoginResult(role=ActorRole.TEAM, identifier=team.code, tournament_id=team.tournament_id)

    return None


async def authenticate(
    code: str,
    role_hint: ActorRole,
    *,
    admin_codes: Iterable[str],
    managers: Iterable[Manager],
    teams: Iterable[Team],
    tournaments: Iterable[Tournament],
    gateway: RemoteStoreGateway | None = None,
) -> LoginResult | None:
    """Resolve an access code to a role, or None when the code is unknown."""
    code = code.strip()
    if not code:
        return None

    result = match_local(code, admin_codes=admin_codes, managers=managers, teams=teams, tournaments=tournaments)
    if result is not None:
        logger.info("login matched locally", role=result.role, identifier=result.identifier)
        return result

    if gateway is None:
        return None
    try:
        result = await gateway.login(code, role_hint)
    except RemoteError as e:
        logger.warning("remote login failed", role_hint=role_hint, error=str(e))
        return None
    logger.info("login matched remotely", role=result.role, identifier=result.identifier)
    return result
