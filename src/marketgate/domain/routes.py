from __future__ import annotations

import json
from enum import StrEnum
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, model_validator

from marketgate.domain.models import Role

DEFAULT_ROUTE_TABLE_PATH = Path(__file__).resolve().parent.parent / "data" / "routes.json"


class RouteAccess(StrEnum):
    PUBLIC = "public"
    PROTECTED = "protected"
    ROLE_SCOPED = "role_scoped"


class RouteRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    pattern: str
    access: RouteAccess
    roles: tuple[Role, ...] = ()

    @model_validator(mode="after")
    def _check_roles(self) -> RouteRule:
        if not self.pattern.startswith("/"):
            raise ValueError(f"route pattern must start with '/': {self.pattern!r}")
        if self.access == RouteAccess.ROLE_SCOPED and not self.roles:
            raise ValueError(f"role_scoped route {self.pattern!r} needs at least one role")
        if self.access != RouteAccess.ROLE_SCOPED and self.roles:
            raise ValueError(f"only role_scoped routes may list roles: {self.pattern!r}")
        if "*" in self.pattern and not self.pattern.endswith("/*"):
            raise ValueError(f"wildcard is only allowed as the last segment: {self.pattern!r}")
        return self

    @property
    def segments(self) -> tuple[str, ...]:
        return _split(self.pattern)

    def matches(self, path_segments: tuple[str, ...]) -> bool:
        pattern = self.segments
        if pattern and pattern[-1] == "*":
            prefix = pattern[:-1]
            if len(path_segments) < len(prefix):
                return False
            return all(_segment_matches(p, s) for p, s in zip(prefix, path_segments, strict=False))
        if len(pattern) != len(path_segments):
            return False
        return all(_segment_matches(p, s) for p, s in zip(pattern, path_segments, strict=True))

    def specificity(self) -> tuple[int, int, int]:
        pattern = self.segments
        literal = sum(1 for p in pattern if p != "*" and not p.startswith(":"))
        params = sum(1 for p in pattern if p.startswith(":"))
        exact = 0 if pattern and pattern[-1] == "*" else 1
        return (literal, exact, params)


# Unmatched paths are gated like protected ones.
FALLBACK_RULE = RouteRule(pattern="/*", access=RouteAccess.PROTECTED)


class RouteTable:
    def __init__(self, rules: list[RouteRule] | tuple[RouteRule, ...]) -> None:
        patterns = [rule.pattern for rule in rules]
        duplicates = sorted({p for p in patterns if patterns.count(p) > 1})
        if duplicates:
            raise ValueError(f"duplicate route patterns: {duplicates}")
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[RouteRule, ...]:
        return self._rules

    def match(self, route: str) -> RouteRule:
        path_segments = _split(normalize_path(route))
        candidates = [rule for rule in self._rules if rule.matches(path_segments)]
        if not candidates:
            return FALLBACK_RULE
        return max(candidates, key=lambda rule: rule.specificity())

    def to_payload(self) -> list[dict[str, object]]:
        return [rule.model_dump(mode="json") for rule in self._rules]

    @classmethod
    def from_payload(cls, payload: object) -> RouteTable:
        if isinstance(payload, dict):
            payload = payload.get("routes")
        if not isinstance(payload, list):
            raise ValueError("route table payload must be a list or {'routes': [...]}")
        return cls([RouteRule.model_validate(item) for item in payload])


def load_route_table(path: Path | str | None = None) -> RouteTable:
    source = Path(path) if path is not None else DEFAULT_ROUTE_TABLE_PATH
    with source.open(encoding="utf-8") as handle:
        return RouteTable.from_payload(json.load(handle))


def normalize_path(route: str) -> str:
    raw = (route or "").strip()
    try:
        path = urlsplit(raw).path if raw else "/"
    except ValueError:
        path = raw.split("?", 1)[0].split("#", 1)[0]
    parts = [part for part in path.split("/") if part and part != "."]
    return "/" + "/".join(parts)


def _split(path: str) -> tuple[str, ...]:
    return tuple(part for part in path.split("/") if part)


def _segment_matches(pattern: str, segment: str) -> bool:
    if pattern.startswith(":"):
        return bool(segment)
    return pattern.lower() == segment.lower()
