from dataclasses import dataclass, field
from typing import Any, List, Dict

from matching_service.domain.value_objects import UserProfile, MatchPreferences


@dataclass
class WaitingEntry:
    """Пользователь, ожидающий собеседника в очереди"""
    user_id: str
    connection_ref: Any
    profile: UserProfile
    preferences: MatchPreferences
    enqueued_at: int  # epoch ms

    def age_ms(self, now: int) -> int:
        return now - self.enqueued_at

    def is_expired(self, now: int, timeout_ms: int) -> bool:
        return self.age_ms(now) > timeout_ms

    def is_compatible_with(self, other: 'WaitingEntry') -> bool:
        """Взаимная совместимость: предпочтения обоих должны принять другого"""
        if self.user_id == other.user_id:
            return False

        return (
            self.preferences.accepts(other.profile)
            and other.preferences.accepts(self.profile)
        )


@dataclass
class MatchedPair:
    """Пара, найденная очередью. user1 - тот, чей вход в очередь вызвал матч"""
    user1: WaitingEntry
    user2: WaitingEntry
    matched_at: int

    def __post_init__(self):
        if self.user1.user_id == self.user2.user_id:
            raise ValueError("Cannot match user with themselves")


@dataclass(frozen=True)
class WaitingUserStatus:
    user_id: str
    name: str
    waiting_time_ms: int


@dataclass(frozen=True)
class QueueStatus:
    """Снимок состояния очереди для диагностики"""
    waiting_count: int
    matched_pair_count: int
    waiting_users: List[WaitingUserStatus] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'waiting_count': self.waiting_count,
            'matched_pair_count': self.matched_pair_count,
            'waiting_users': [
                {
                    'user_id': user.user_id,
                    'name': user.name,
                    'waiting_time_ms': user.waiting_time_ms
                }
                for user in self.waiting_users
            ]
        }
