from marketgate.policy.route_authorization import (
    DEFAULT_DASHBOARDS,
    DecisionKind,
    RouteAuthorizationPolicy,
    RouteDecision,
    decide,
)

__all__ = [
    "DEFAULT_DASHBOARDS",
    "DecisionKind",
    "RouteAuthorizationPolicy",
    "RouteDecision",
    "decide",
]
