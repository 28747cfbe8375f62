from __future__ import annotations

import asyncio

import pytest

from marketgate.adapters.memory_backend import InMemoryBackendService
from marketgate.domain.errors import ForbiddenError
from marketgate.domain.models import Role, Session
from marketgate.services.admin_service import AdminService
from marketgate.services.session_gate import SessionGate

ADMIN_ID = "8c3d4e5f6a7b8c9d0e1f2a3b"
BUYER_ID = "6a1b2c3d4e5f6a7b8c9d0e1f"
MODERATOR_ID = "9d4e5f6a7b8c9d0e1f2a3b4c"


def test_admin_ban_denies_next_session_resolution(market: InMemoryBackendService) -> None:
    market.sign_in(ADMIN_ID)
    admin = Session.authenticated(ADMIN_ID, Role.ADMIN)

    result = asyncio.run(AdminService(market).ban_user(admin, BUYER_ID, ban=True))

    assert result["user"]["isBanned"] is True
    market.sign_in(BUYER_ID)
    assert asyncio.run(SessionGate(market).resolve()) == Session.unauthenticated()


def test_unban_restores_access(market: InMemoryBackendService) -> None:
    market.users[BUYER_ID]["isBanned"] = True
    market.sign_in(ADMIN_ID)
    admin = Session.authenticated(ADMIN_ID, Role.ADMIN)

    asyncio.run(AdminService(market).ban_user(admin, BUYER_ID, ban=False))

    market.sign_in(BUYER_ID)
    assert asyncio.run(SessionGate(market).resolve()).is_authenticated


@pytest.mark.parametrize(
    "session",
    [
        Session.unauthenticated(),
        Session.loading(),
        Session.authenticated(BUYER_ID, Role.USER),
        Session.authenticated(MODERATOR_ID, Role.MODERATOR),
    ],
)
def test_non_admin_cannot_ban(market: InMemoryBackendService, session: Session) -> None:
    with pytest.raises(ForbiddenError):
        asyncio.run(AdminService(market).ban_user(session, BUYER_ID))
    assert market.calls["ban_user"] == 0


def test_admin_cannot_ban_self(market: InMemoryBackendService) -> None:
    with pytest.raises(ForbiddenError):
        asyncio.run(
            AdminService(market).ban_user(Session.authenticated(ADMIN_ID, Role.ADMIN), ADMIN_ID)
        )


def test_malformed_target_id_is_rejected(market: InMemoryBackendService) -> None:
    with pytest.raises(ValueError):
        asyncio.run(
            AdminService(market).ban_user(Session.authenticated(ADMIN_ID, Role.ADMIN), "bogus")
        )
