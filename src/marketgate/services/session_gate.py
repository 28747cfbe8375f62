from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from pydantic import ValidationError

from marketgate.adapters.backend import BackendService
from marketgate.domain.errors import MarketGateError, SessionResolutionError
from marketgate.domain.models import Role, Session, SessionUser

logger = logging.getLogger(__name__)

TokenSource = Callable[[], str | None]


def session_from_payload(payload: object) -> Session:
    """Build a session from one backend user payload; anything unusable is unauthenticated."""
    try:
        user = SessionUser.from_payload(payload)
    except ValidationError:
        return Session.unauthenticated()
    if user is None or user.is_banned:
        return Session.unauthenticated()
    role_raw = (user.role or Role.USER.value).strip().lower()
    try:
        role = Role(role_raw)
    except ValueError:
        logger.warning("session_unknown_role", extra={"extra": {"role": role_raw}})
        return Session.unauthenticated()
    return Session.authenticated(user.id, role)


class SessionGate:
    """Owns the current visitor's session.

    The session starts as ``LOADING`` and is only ever replaced by a whole value
    derived from a single backend payload. Concurrent ``refresh`` calls share one
    in-flight resolution.
    """

    def __init__(self, backend: BackendService, *, token_source: TokenSource | None = None) -> None:
        self._backend = backend
        self._token_source = token_source
        self._session = Session.loading()
        self._inflight: asyncio.Task[Session] | None = None
        self._generation = 0

    @property
    def current(self) -> Session:
        return self._session

    async def resolve(self) -> Session:
        if not self._session.is_loading:
            return self._session
        return await self.refresh()

    async def refresh(self) -> Session:
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._resolve_once(self._generation))
        return await asyncio.shield(self._inflight)

    async def sign_out(self) -> Session:
        self._generation += 1
        self._inflight = None
        self._session = Session.unauthenticated()
        try:
            await self._backend.sign_out()
        except MarketGateError as exc:
            logger.warning(
                "session_sign_out_failed",
                extra={"extra": {"error_type": type(exc).__name__, "error": str(exc)}},
            )
        return self._session

    async def _resolve_once(self, generation: int) -> Session:
        try:
            session = await self._fetch()
        except SessionResolutionError as exc:
            logger.warning(
                "session_resolution_failed",
                extra={"extra": {"error": str(exc), "cause": type(exc.__cause__).__name__}},
            )
            session = Session.unauthenticated()

        if generation != self._generation:
            # Signed out while this resolution was in flight.
            return self._session
        self._session = session
        logger.info(
            "session_resolved",
            extra={"extra": {"state": session.state.value, "role": session.role}},
        )
        return session

    async def _fetch(self) -> Session:
        try:
            payload = await self._backend.get_session()
        except MarketGateError as exc:
            raise SessionResolutionError("cookie session lookup failed") from exc

        session = session_from_payload(payload)
        if session.is_authenticated or _has_user(payload):
            return session

        token = self._token_source() if self._token_source is not None else None
        if not token:
            return session
        try:
            payload = await self._backend.get_current_user(token)
        except MarketGateError as exc:
            raise SessionResolutionError("token session lookup failed") from exc
        return session_from_payload(payload)


def _has_user(payload: object) -> bool:
    # A present but rejected user (banned, unknown role) must not fall through to the token.
    return isinstance(payload, dict) and isinstance(payload.get("user"), dict)
