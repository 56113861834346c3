"""
User context and configuration service.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from synapse.core.exceptions import InvalidRequestError
from synapse.core.logging import get_logger
from synapse.domain.user import CallerContext
from synapse.repositories.user_repo import UserConfigRepository

logger = get_logger(__name__)


class UserService:
    """Per-user context and preferences."""

    def __init__(self, repository: UserConfigRepository) -> None:
        self.repository = repository

    async def get_user_context(self, caller: CallerContext) -> dict[str, Any]:
        caller.require_account_id()
        context = caller.to_response()
        context["timezone"] = caller.timezone or "UTC"
        context["locale"] = caller.locale or "en-US"
        context["timestamp"] = datetime.now(timezone.utc).isoformat()
        return {"success": True, "userContext": context}

    async def get_user_config(self, caller: CallerContext) -> dict[str, Any]:
        user_id = caller.require_account_id()
        config = await self.repository.get_or_default(user_id)
        return {"success": True, "config": config.to_response()}

    async def save_user_config(self, config: Any, caller: CallerContext) -> dict[str, Any]:
        """Merge preferences/settings into the stored config."""
        user_id = caller.require_account_id()
        if not isinstance(config, dict):
            raise InvalidRequestError("Invalid configuration payload", field="config")

        current = await self.repository.get_or_default(user_id)
        updated = current.merged(config)
        await self.repository.save(updated, user_id)

        logger.info("User config saved", user_id=user_id)
        return {"success": True, "config": updated.to_response()}
