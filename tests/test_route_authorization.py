from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from marketgate.domain.models import Role, Session, SessionState
from marketgate.domain.routes import RouteAccess, RouteRule, RouteTable
from marketgate.policy import DecisionKind, RouteAuthorizationPolicy, RouteDecision, decide

USER_ID = "6a1b2c3d4e5f6a7b8c9d0e1f"

POLICY = RouteAuthorizationPolicy()


def test_loading_session_waits_on_protected_route() -> None:
    assert decide("/profile", Session.loading()) == RouteDecision.wait()


def test_unauthenticated_is_sent_to_auth_from_protected_route() -> None:
    outcome = decide("/profile", Session.unauthenticated())
    assert outcome.kind == DecisionKind.REDIRECT
    assert outcome.target == "/auth"


def test_user_is_sent_home_from_admin_tree() -> None:
    outcome = decide("/admin/dashboard", Session.authenticated(USER_ID, Role.USER))
    assert outcome.kind == DecisionKind.REDIRECT
    assert outcome.target == "/"


def test_admin_landing_redirects_to_admin_dashboard() -> None:
    outcome = decide("/", Session.authenticated(USER_ID, Role.ADMIN))
    assert outcome.kind == DecisionKind.REDIRECT
    assert outcome.target == "/admin/dashboard"


def test_moderator_landing_redirects_to_moderator_dashboard() -> None:
    outcome = POLICY.decide("/", Session.authenticated(USER_ID, Role.MODERATOR))
    assert outcome.target == "/moderator/dashboard"


@pytest.mark.parametrize("session", [Session.unauthenticated(), Session.authenticated(USER_ID, "user")])
def test_landing_is_public_for_everyone_else(session: Session) -> None:
    assert POLICY.decide("/", session).kind == DecisionKind.ALLOW


def test_auth_page_redirects_authenticated_sessions_home() -> None:
    outcome = POLICY.decide("/auth", Session.authenticated(USER_ID, Role.USER))
    assert outcome == RouteDecision.redirect("/", "already_authenticated")
    assert POLICY.decide("/auth", Session.unauthenticated()).kind == DecisionKind.ALLOW


@pytest.mark.parametrize("route", ["/AUTH", "/Auth/", "/auth?next=/orders"])
def test_auth_page_matches_regardless_of_case(route: str) -> None:
    outcome = POLICY.decide(route, Session.authenticated(USER_ID, Role.USER))
    assert outcome == RouteDecision.redirect("/", "already_authenticated")
    assert POLICY.decide(route, Session.unauthenticated()) == RouteDecision.allow("auth_page")


def test_landing_matches_regardless_of_case() -> None:
    policy = RouteAuthorizationPolicy(landing_path="/home")

    outcome = policy.decide("/HOME", Session.authenticated(USER_ID, Role.ADMIN))
    assert outcome == RouteDecision.redirect("/admin/dashboard", "role_dashboard")
    assert policy.decide("/Home", Session.unauthenticated()) == RouteDecision.allow("landing")


def test_malformed_user_id_is_treated_as_unauthenticated() -> None:
    session = Session.authenticated("not-an-object-id", Role.ADMIN)

    assert POLICY.decide("/profile", session).target == "/auth"
    assert POLICY.decide("/admin/dashboard", session).target == "/auth"
    assert POLICY.decide("/", session).kind == DecisionKind.ALLOW
    assert POLICY.decide("/auth", session).kind == DecisionKind.ALLOW


def test_public_routes_allow_without_session() -> None:
    for route in ("/about", "/product/123", "/categories/desks", "/search?q=lamp"):
        assert POLICY.decide(route, Session.unauthenticated()).kind == DecisionKind.ALLOW


def test_role_scoped_route_allows_matching_role() -> None:
    outcome = POLICY.decide("/moderator/reports", Session.authenticated(USER_ID, Role.MODERATOR))
    assert outcome == RouteDecision.allow("role_scoped")


def test_unlisted_route_uses_protected_fallback() -> None:
    policy = RouteAuthorizationPolicy(RouteTable([RouteRule(pattern="/about", access=RouteAccess.PUBLIC)]))

    assert policy.decide("/unknown", Session.unauthenticated()).target == "/auth"
    assert policy.decide("/unknown", Session.authenticated(USER_ID, Role.USER)).kind == DecisionKind.ALLOW


def test_decision_payload_shape() -> None:
    payload = POLICY.decide("/profile", Session.unauthenticated()).to_payload()
    assert payload == {"decision": "redirect", "target": "/auth", "reason": "unauthenticated"}


sessions = st.one_of(
    st.just(Session.loading()),
    st.just(Session.unauthenticated()),
    st.builds(
        Session.authenticated,
        st.one_of(st.just(USER_ID), st.text(max_size=30)),
        st.sampled_from(list(Role)),
    ),
    st.builds(
        Session,
        st.sampled_from(list(SessionState)),
        st.one_of(st.none(), st.text(max_size=30)),
        st.one_of(st.none(), st.sampled_from(list(Role))),
    ),
)

routes = st.one_of(
    st.sampled_from(["/", "/auth", "/profile", "/admin/dashboard", "/moderator", "/orders/1"]),
    st.text(max_size=40),
    st.lists(st.text(alphabet="abc:*?#./%[]", max_size=6), max_size=5).map(lambda p: "/" + "/".join(p)),
)


@given(route=routes, session=sessions)
def test_decide_is_total(route: str, session: Session) -> None:
    outcome = POLICY.decide(route, session)

    assert outcome.kind in set(DecisionKind)
    if session.is_loading:
        assert outcome.kind == DecisionKind.WAIT
    if outcome.kind == DecisionKind.REDIRECT:
        assert outcome.target in {"/", "/auth", "/admin/dashboard", "/moderator/dashboard"}
    else:
        assert outcome.target is None
