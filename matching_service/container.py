import inspect
import logging
from typing import Type, Any, Dict, Optional

import redis
import socketio
from redis.asyncio import Redis as aioredis

from matching_service.application.coordinator import SessionCoordinator
from matching_service.application.interfaces import (
    AbstractUserDirectory, AbstractRealtimeTransport, AbstractMetricsCollector
)
from matching_service.application.matching_queue import MatchingQueue
from matching_service.application.presence import PresenceRegistry
from matching_service.config import config
from matching_service.handlers.call_events_handler import CallEventsHandler
from matching_service.infrastructure.realtime import SocketIOTransport
from matching_service.infrastructure.repositories import RedisUserDirectory
from matching_service.infrastructure.services import RateLimiter, PrometheusMetricsCollector


class ServiceNotRegisteredError(Exception):
    """Исключение для незарегистрированного сервиса"""
    pass


class ServiceContainer:

    def __init__(self):
        self._services: Dict[Type, tuple] = {}
        self._singletons: Dict[Type, Any] = {}
        self._initialized = False

    def register_singleton(self, interface: Type, implementation: Type = None):
        """
        Зарегистрировать singleton сервис - зависимость, создаваемая
        один раз на весь процесс
        :param interface: абстрактный порт для определенного сервиса
        :param implementation: адаптер под него
        """
        if implementation is None:
            implementation = interface
        self._services[interface] = (implementation, True)

    def register_transient(self, interface: Type, implementation: Type = None):
        """
        Зарегистрировать transient сервис - новый экземпляр на каждый запрос
        :param interface: абстрактный порт для определенного сервиса
        :param implementation: адаптер под него
        """
        if implementation is None:
            implementation = interface
        self._services[interface] = (implementation, False)

    def register_instance(self, interface: Type, instance: Any):
        """ Зарегистрировать готовый экземпляр """
        self._singletons[interface] = instance
        self._services[interface] = (type(instance), True)

    def is_registered(self, interface: Type) -> bool:
        return interface in self._services

    async def get(self, interface: Type):
        """ Получить экземпляр сервиса """
        if interface not in self._services:
            raise ServiceNotRegisteredError(f"Service {interface.__name__} not registered")

        implementation, is_singleton = self._services[interface]
        if is_singleton:
            if interface not in self._singletons:
                self._singletons[interface] = await self._create_instance(implementation)
            return self._singletons[interface]
        else:
            return await self._create_instance(implementation)

    async def _create_instance(self, implementation: Type):
        """ Создать экземпляр с dependency injection """

        # Получить параметры конструктора
        sig = inspect.signature(implementation.__init__)
        params = {}

        for param_name, param in sig.parameters.items():
            if param_name == 'self':
                continue

            # Разрешить зависимость по типу аннотации, иначе оставить значение по умолчанию
            if param.annotation != inspect.Parameter.empty:
                if param.annotation in self._services:
                    params[param_name] = await self.get(param.annotation)
                elif hasattr(param.annotation, '__origin__'):
                    # Generic типы (например, Optional[SomeType]) не разрешаются
                    continue

        return implementation(**params)

    async def initialise(self):
        """ Инициализировать контейнер и все зависимости """

        if self._initialized:
            return

        # Создать подключения к внешним зависимостям
        await self._setup_external_connections()

        # Зарегистрировать все сервисы
        await self._register_services()

        self._initialized = True

    async def _setup_external_connections(self):
        """ Настроить подключения к внешним сервисам """
        # Redis подключение
        if not self.is_registered(redis.Redis):
            try:
                redis_client = await aioredis.from_url(
                    url=config.redis.url,
                    max_connections=config.redis.max_connections,
                    retry_on_timeout=config.redis.retry_on_timeout,
                    socket_timeout=config.redis.socket_timeout,
                    socket_connect_timeout=config.redis.socket_connect_timeout,
                    decode_responses=True
                )
                self.register_instance(redis.Redis, redis_client)

            except Exception as e:
                logging.warning(f"Failed to connect to Redis: {e}. Proceeding without Redis connection.")

        # Socket.IO сервер (обычно регистрируется приложением заранее)
        if not self.is_registered(socketio.AsyncServer):
            self.register_instance(
                socketio.AsyncServer,
                socketio.AsyncServer(async_mode="asgi")
            )

    async def _register_services(self):
        """ Зарегистрировать все сервисы """

        # Ядро: очередь и реестр присутствия
        self.register_singleton(MatchingQueue)
        self.register_singleton(PresenceRegistry)

        # Adapters
        self.register_singleton(AbstractUserDirectory, RedisUserDirectory)
        self.register_singleton(AbstractRealtimeTransport, SocketIOTransport)
        self.register_singleton(AbstractMetricsCollector, PrometheusMetricsCollector)

        # Utility services
        self.register_singleton(RateLimiter, RateLimiter)

        # Координатор и обработчики
        self.register_singleton(SessionCoordinator)
        self.register_transient(CallEventsHandler)

    async def cleanup(self):
        """Очистить ресурсы"""

        # Закрыть соединения
        if redis.Redis in self._singletons:
            await self._singletons[redis.Redis].aclose()

        # Очистить состояния
        self._singletons.clear()
        self._services.clear()
        self._initialized = False


class ServiceFactory:
    """ Фабрика для создания настроенного контейнера """

    @staticmethod
    async def create_container(sio: socketio.AsyncServer = None) -> ServiceContainer:
        """Создать и настроить контейнер"""
        container = ServiceContainer()
        if sio is not None:
            container.register_instance(socketio.AsyncServer, sio)
        await container.initialise()
        return container


# Глобальный контейнер (Singleton)
_container: Optional[ServiceContainer] = None


async def get_container(sio: socketio.AsyncServer = None) -> ServiceContainer:
    """ Получить глобальный контейнер """
    global _container
    if _container is None:
        _container = await ServiceFactory.create_container(sio)

    return _container


async def cleanup_container() -> None:
    """Очистить глобальный контейнер"""
    global _container

    if _container is not None:
        await _container.cleanup()
        _container = None


# УДОБНЫЕ ФУНКЦИИ ДЛЯ ПОЛУЧЕНИЯ СЕРВИСОВ
async def get_matching_queue() -> MatchingQueue:
    """ Получить очередь поиска """
    container = await get_container()
    return await container.get(MatchingQueue)


async def get_presence_registry() -> PresenceRegistry:
    """ Получить реестр присутствия """
    container = await get_container()
    return await container.get(PresenceRegistry)


async def get_metrics_collector() -> AbstractMetricsCollector:
    """ Получить сборщик метрик """
    container = await get_container()
    return await container.get(AbstractMetricsCollector)
