import pytest
import redis
import socketio

from matching_service.application.coordinator import SessionCoordinator
from matching_service.application.interfaces import (
    AbstractUserDirectory, AbstractRealtimeTransport, AbstractMetricsCollector
)
from matching_service.application.matching_queue import MatchingQueue
from matching_service.application.presence import PresenceRegistry
from matching_service.container import ServiceContainer, ServiceNotRegisteredError
from matching_service.handlers.call_events_handler import CallEventsHandler
from matching_service.infrastructure.realtime import SocketIOTransport
from matching_service.infrastructure.repositories import RedisUserDirectory
from matching_service.infrastructure.services import PrometheusMetricsCollector, RateLimiter


@pytest.fixture
async def container():
    """ Фикстура для создания тестового контейнера """
    container = ServiceContainer()
    container.register_instance(socketio.AsyncServer, socketio.AsyncServer(async_mode="asgi"))

    await container.initialise()

    yield container

    # Очистка после теста
    await container.cleanup()


@pytest.mark.asyncio
async def test_create_service_container(container):
    """ Тест с созданием экземляра контейнера"""
    assert hasattr(container, '_services')
    assert hasattr(container, '_singletons')
    assert container._initialized


@pytest.mark.asyncio
async def test_all_services_created_according_to_type(container):
    """ Тест с извлечением адаптеров """
    assert isinstance(await container.get(AbstractUserDirectory), RedisUserDirectory)
    assert isinstance(await container.get(AbstractRealtimeTransport), SocketIOTransport)
    assert isinstance(await container.get(AbstractMetricsCollector), PrometheusMetricsCollector)
    assert await container.get(redis.Redis) is not None


@pytest.mark.asyncio
async def test_coordinator_is_wired_with_singletons(container):
    """ Координатор получает те же экземпляры очереди и реестра """
    coordinator = await container.get(SessionCoordinator)

    assert coordinator.queue is await container.get(MatchingQueue)
    assert coordinator.presence is await container.get(PresenceRegistry)
    assert isinstance(coordinator.rate_limiter, RateLimiter)
    assert coordinator.transport.server is await container.get(socketio.AsyncServer)
    assert coordinator is await container.get(SessionCoordinator)


@pytest.mark.asyncio
async def test_transient_handler(container):
    first = await container.get(CallEventsHandler)
    second = await container.get(CallEventsHandler)

    assert first is not second
    assert first.coordinator is second.coordinator


@pytest.mark.asyncio
async def test_unregistered_service(container):
    with pytest.raises(ServiceNotRegisteredError):
        await container.get(dict)


@pytest.mark.asyncio
async def test_cleanup_method(container):
    """ Тест с очисткой контейнера """
    await container.cleanup()
    assert not container._singletons
    assert not container._initialized
