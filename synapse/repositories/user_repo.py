"""
User configuration repository.
"""

from __future__ import annotations

from synapse.core.constants import USER_CONFIG_KEY
from synapse.domain.user import UserConfig
from synapse.repositories.base import BaseRepository


class UserConfigRepository(BaseRepository[UserConfig]):
    """User configs under user:<id>:config."""

    model = UserConfig

    def key_for(self, id: str) -> str:
        return USER_CONFIG_KEY.format(user_id=id)

    async def get_or_default(self, user_id: str) -> UserConfig:
        return await self.get(user_id) or UserConfig()
