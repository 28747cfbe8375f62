from __future__ import annotations

import argparse
import asyncio
import json
import logging
from collections.abc import Sequence

from pydantic import ValidationError

from marketgate.adapters.backend import BackendService
from marketgate.adapters.http_backend import HttpBackendService
from marketgate.config import Settings
from marketgate.domain.lifecycle import OrderLifecycleMachine
from marketgate.domain.models import Role, Session, SessionState
from marketgate.domain.routes import RouteTable, load_route_table
from marketgate.logging_context import with_logging_context
from marketgate.logging_utils import setup_logging
from marketgate.policy.route_authorization import RouteAuthorizationPolicy
from marketgate.services.session_gate import SessionGate

logger = logging.getLogger(__name__)


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="marketgate",
        epilog="Env overrides: MARKETGATE_BACKEND_URL, MARKETGATE_ROUTE_TABLE_PATH, LOG_LEVEL.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    decide_parser = subparsers.add_parser("decide", help="Authorize one navigation")
    decide_parser.add_argument("--route", required=True, help="Path being navigated to")
    decide_parser.add_argument(
        "--state",
        choices=[state.value for state in SessionState],
        default=None,
        help="Session state (defaults to authenticated when --user-id is given)",
    )
    decide_parser.add_argument("--role", choices=[role.value for role in Role], default=None)
    decide_parser.add_argument("--user-id", default=None)

    subparsers.add_parser("routes", help="Print the effective route table")
    subparsers.add_parser("transitions", help="Print the order lifecycle transition table")
    subparsers.add_parser("session", help="Resolve the session against the configured backend")

    args = parser.parse_args(argv)

    try:
        settings = Settings()
    except ValidationError as exc:
        print(f"invalid configuration: {exc}")
        return 2
    setup_logging(settings.log_level)

    try:
        table = load_route_table(settings.route_table_path)
    except (OSError, ValueError) as exc:
        print(f"invalid route table: {exc}")
        return 2

    if args.command == "decide":
        return run_decide(
            table,
            route=args.route,
            state=args.state,
            role=args.role,
            user_id=args.user_id,
        )
    if args.command == "routes":
        return _print_json(table.to_payload())
    if args.command == "transitions":
        return _print_json(OrderLifecycleMachine().transition_table())
    if args.command == "session":
        return run_session(settings)
    return 2


def run_decide(
    table: RouteTable,
    *,
    route: str,
    state: str | None,
    role: str | None,
    user_id: str | None,
) -> int:
    resolved_state = SessionState(state) if state else None
    if resolved_state is None:
        resolved_state = SessionState.AUTHENTICATED if user_id else SessionState.UNAUTHENTICATED

    if resolved_state == SessionState.AUTHENTICATED:
        if not user_id:
            print("--user-id is required for an authenticated session")
            return 2
        session = Session.authenticated(user_id, role or Role.USER)
    elif resolved_state == SessionState.LOADING:
        session = Session.loading()
    else:
        session = Session.unauthenticated()

    with with_logging_context(route=route, user_id=session.user_id):
        decision = RouteAuthorizationPolicy(table).decide(route, session)
        logger.debug("route_decided", extra={"extra": decision.to_payload()})
    return _print_json({"route": route, "session": _session_payload(session), **decision.to_payload()})


def build_backend(settings: Settings) -> BackendService:
    return HttpBackendService(base_url=settings.backend_url, reliability=settings.reliability())


def run_session(settings: Settings) -> int:
    async def _resolve() -> Session:
        backend = build_backend(settings)
        try:
            gate = SessionGate(backend, token_source=settings.api_token_value)
            return await gate.resolve()
        finally:
            await backend.close()

    session = asyncio.run(_resolve())
    return _print_json(_session_payload(session))


def _session_payload(session: Session) -> dict[str, object]:
    return {
        "state": session.state.value,
        "user_id": session.user_id,
        "role": session.role.value if session.role is not None else None,
    }


def _print_json(payload: object) -> int:
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
