from typing import Dict, Optional
from unittest.mock import AsyncMock

import pytest

from matching_service.application.coordinator import SessionCoordinator
from matching_service.application.interfaces import AbstractUserDirectory
from matching_service.application.matching_queue import MatchingQueue
from matching_service.application.presence import PresenceRegistry
from matching_service.domain.value_objects import UserProfile, MatchPreferences, EnglishLevel
from matching_service.infrastructure.services import PrometheusMetricsCollector


class FakeClock:
    """ Управляемые часы в миллисекундах """

    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeUserDirectory(AbstractUserDirectory):
    """ Справочник пользователей в памяти """

    def __init__(self):
        self.profiles: Dict[str, UserProfile] = {}
        self.preferences: Dict[str, MatchPreferences] = {}

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.profiles.get(user_id)

    async def get_preferences(self, user_id: str) -> Optional[MatchPreferences]:
        return self.preferences.get(user_id)

    async def save_preferences(self, user_id: str, preferences: MatchPreferences) -> None:
        self.preferences[user_id] = preferences


def make_profile(name="Anna", level="B1", gender="Female", rating=50, country="RU") -> UserProfile:
    return UserProfile(
        name=name,
        profile_pic=f"https://cdn.example.com/{name.lower()}.png",
        level=EnglishLevel.parse(level),
        country=country,
        gender=gender,
        rating=rating
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    """ Очередь с управляемыми часами и без фоновой очистки """
    return MatchingQueue(timeout_ms=60_000, sweep_interval=10, clock=clock)


@pytest.fixture
def presence(clock):
    return PresenceRegistry(clock=clock)


@pytest.fixture
def transport():
    transport = AsyncMock()
    transport.emit = AsyncMock()
    transport.broadcast = AsyncMock()
    return transport


@pytest.fixture
def directory():
    return FakeUserDirectory()


@pytest.fixture
def metrics_collector():
    """Фикстура для создания экземпляра PrometheusMetricsCollector"""
    return PrometheusMetricsCollector()


@pytest.fixture
def coordinator(queue, presence, transport, directory, metrics_collector):
    return SessionCoordinator(queue, presence, transport, directory, metrics_collector)


@pytest.fixture
def profile_factory():
    """ Фабрика профилей для тестов """
    return make_profile
