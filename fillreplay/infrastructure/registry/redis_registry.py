import asyncio
import logging
from typing import Iterable, List, Set

import redis

from fillreplay.core.interfaces.registry import IUserRegistry, normalize_address

logger = logging.getLogger(__name__)

DEFAULT_KEY = "fillreplay:leaderboard:users"


class InMemoryUserRegistry(IUserRegistry):
    def __init__(self, users: Iterable[str] = ()):
        self._users: Set[str] = {normalize_address(u) for u in users}

    async def list_users(self) -> List[str]:
        return sorted(self._users)

    async def add_user(self, user: str) -> bool:
        user = normalize_address(user)
        if user in self._users:
            return False
        self._users.add(user)
        return True


class RedisUserRegistry(IUserRegistry):
    """
    Tracked users stored in a redis set, shared across API workers.
    SADD makes registration atomic and idempotent.
    """

    def __init__(self, redis_url: str, key: str = DEFAULT_KEY, seed_users: Iterable[str] = ()):
        self.key = key
        self.client = redis.from_url(redis_url, decode_responses=True)
        seed = [normalize_address(u) for u in seed_users]
        if seed:
            self.client.sadd(self.key, *seed)
        logger.info(f"Leaderboard registry backed by Redis key {self.key}.")

    async def list_users(self) -> List[str]:
        members = await asyncio.to_thread(self.client.smembers, self.key)
        return sorted(members)

    async def add_user(self, user: str) -> bool:
        added = await asyncio.to_thread(self.client.sadd, self.key, normalize_address(user))
        return added == 1
