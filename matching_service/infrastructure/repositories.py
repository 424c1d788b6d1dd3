from typing import Optional, Dict, Any

import redis

from matching_service.application.interfaces import AbstractUserDirectory
from matching_service.config import config
from matching_service.domain.exceptions import InvalidPreferencesException, InvalidProfileException
from matching_service.domain.value_objects import UserProfile, MatchPreferences
from matching_service.logconfig import opt_logger as log

logger = log.setup_logger(name='repositories')


def _to_mapping(data: Dict[str, Any]) -> Dict[str, str]:
    """ Redis хранит только строки, пустые значения -> "" """
    return {key: "" if value is None else str(value) for key, value in data.items()}


class RedisUserDirectory(AbstractUserDirectory):
    """ Справочник пользователей на Redis: хэши profile:{id} и preferences:{id} """

    def __init__(self, r_client: redis.Redis):
        self.redis = r_client

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        """ Найти профиль пользователя по ID """
        profile_data = await self.redis.hgetall(f"profile:{user_id}")
        if not profile_data:
            return None

        try:
            return UserProfile.from_dict(profile_data)
        except InvalidProfileException as e:
            logger.warning(f"Corrupted profile for user {user_id}: {e}")
            return None

    async def get_preferences(self, user_id: str) -> Optional[MatchPreferences]:
        preferences_data = await self.redis.hgetall(f"preferences:{user_id}")
        if not preferences_data:
            return None

        try:
            return MatchPreferences.from_dict(preferences_data)
        except InvalidPreferencesException as e:
            logger.warning(f"Corrupted preferences for user {user_id}: {e}")
            return None

    async def save_preferences(self, user_id: str, preferences: MatchPreferences) -> None:
        key = f"preferences:{user_id}"
        async with self.redis.pipeline() as pipe:
            await pipe.hset(key, mapping=_to_mapping(preferences.to_dict()))
            await pipe.expire(key, config.redis.profile_ttl)
            await pipe.execute()

        logger.debug(f"Preferences of user {user_id} saved on Redis")
