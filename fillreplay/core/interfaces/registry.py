from abc import ABC, abstractmethod
from typing import List


def normalize_address(address: str) -> str:
    return address.strip().lower()


class IUserRegistry(ABC):
    """Users tracked by the leaderboard."""

    @abstractmethod
    async def list_users(self) -> List[str]:
        pass

    @abstractmethod
    async def add_user(self, user: str) -> bool:
        """Registers a user. Returns False if it was already tracked."""
        pass
