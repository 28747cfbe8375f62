from __future__ import annotations

import logging

from marketgate.adapters.backend import BackendService
from marketgate.domain.errors import ForbiddenError
from marketgate.domain.models import Role, Session, is_valid_object_id

logger = logging.getLogger(__name__)


class AdminService:
    def __init__(self, backend: BackendService) -> None:
        self._backend = backend

    async def ban_user(self, session: Session, user_id: str, *, ban: bool = True) -> dict[str, object]:
        """Ban or unban ``user_id``. The user's next session resolution comes back unauthenticated."""
        if not session.is_authenticated or session.role != Role.ADMIN:
            raise ForbiddenError("only admins may ban users")
        if not is_valid_object_id(user_id):
            raise ValueError(f"invalid user id: {user_id!r}")
        if user_id == session.user_id:
            raise ForbiddenError("admins may not ban themselves")

        result = await self._backend.ban_user(user_id, ban=ban)
        logger.info(
            "user_ban_updated",
            extra={"extra": {"target_user_id": user_id, "ban": ban, "admin_id": session.user_id}},
        )
        return result
