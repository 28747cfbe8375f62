from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from functools import cache

from marketgate.domain.models import Role, Session, is_valid_object_id
from marketgate.domain.routes import RouteAccess, RouteTable, load_route_table, normalize_path


class DecisionKind(StrEnum):
    ALLOW = "allow"
    WAIT = "wait"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class RouteDecision:
    kind: DecisionKind
    target: str | None = None
    reason: str = ""

    @classmethod
    def allow(cls, reason: str = "") -> RouteDecision:
        return cls(kind=DecisionKind.ALLOW, reason=reason)

    @classmethod
    def wait(cls) -> RouteDecision:
        return cls(kind=DecisionKind.WAIT, reason="session_loading")

    @classmethod
    def redirect(cls, target: str, reason: str) -> RouteDecision:
        return cls(kind=DecisionKind.REDIRECT, target=target, reason=reason)

    def to_payload(self) -> dict[str, str | None]:
        return {"decision": self.kind.value, "target": self.target, "reason": self.reason}


DEFAULT_DASHBOARDS: dict[Role, str] = {
    Role.MODERATOR: "/moderator/dashboard",
    Role.ADMIN: "/admin/dashboard",
}


class RouteAuthorizationPolicy:
    """Maps every (route, session) pair to exactly one of allow, wait or redirect.

    Views consult ``decide`` once per navigation and render its outcome; denial is
    always a redirect value, never an exception.
    """

    def __init__(
        self,
        table: RouteTable | None = None,
        *,
        landing_path: str = "/",
        auth_path: str = "/auth",
        dashboards: Mapping[Role, str] | None = None,
        id_check: Callable[[object], bool] = is_valid_object_id,
    ) -> None:
        self.table = table or load_route_table()
        self.landing_path = normalize_path(landing_path)
        self.auth_path = normalize_path(auth_path)
        self.dashboards = dict(DEFAULT_DASHBOARDS if dashboards is None else dashboards)
        self._id_check = id_check

    def decide(self, route: str, session: Session) -> RouteDecision:
        if session.is_loading:
            return RouteDecision.wait()

        path = normalize_path(route)
        authenticated = session.is_authenticated and self._id_check(session.user_id)
        # Segments match case-insensitively, as in the route table.
        folded = path.lower()

        if folded == self.auth_path.lower():
            if authenticated:
                return RouteDecision.redirect(self.landing_path, "already_authenticated")
            return RouteDecision.allow("auth_page")

        if folded == self.landing_path.lower():
            dashboard = self.dashboards.get(session.role) if authenticated else None
            if dashboard is not None:
                return RouteDecision.redirect(dashboard, "role_dashboard")
            return RouteDecision.allow("landing")

        rule = self.table.match(path)
        if rule.access == RouteAccess.PUBLIC:
            return RouteDecision.allow("public")
        if not authenticated:
            return RouteDecision.redirect(self.auth_path, "unauthenticated")
        if rule.access == RouteAccess.ROLE_SCOPED and session.role not in rule.roles:
            return RouteDecision.redirect(self.landing_path, "role_mismatch")
        return RouteDecision.allow(rule.access.value)


@cache
def _default_policy() -> RouteAuthorizationPolicy:
    return RouteAuthorizationPolicy()


def decide(route: str, session: Session, policy: RouteAuthorizationPolicy | None = None) -> RouteDecision:
    return (policy or _default_policy()).decide(route, session)
