from contextlib import asynccontextmanager
from typing import Optional

import socketio
import uvicorn
from fastapi import FastAPI
from faststream.rabbit import RabbitBroker
from faststream.rabbit.annotations import RabbitMessage
from starlette.middleware.cors import CORSMiddleware

from matching_service.application.coordinator import SessionCoordinator
from matching_service.application.matching_queue import MatchingQueue
from matching_service.config import AuthConfig, DEFAULT_JWT_SECRET, config
from matching_service.container import ServiceContainer, get_container, cleanup_container
from matching_service.endpoints.queue_endpoints import router as queue_router
from matching_service.handlers.call_events_handler import CallEventsHandler
from matching_service.infrastructure.realtime import PartnerNamespace
from matching_service.logconfig import opt_logger as log

logger = log.setup_logger(name='main')


class CallEventsWorker:
    """ Потребитель событий звонков из RabbitMQ """

    def __init__(self, container: ServiceContainer):
        self.container = container
        self.broker: Optional[RabbitBroker] = None
        self.handler: Optional[CallEventsHandler] = None

    async def start(self):
        """ Запустить потребителя, если RabbitMQ настроен """
        if not config.rabbitmq.url:
            logger.info("RABBITMQ_URL is not set, call events are accepted over sockets only")
            return

        logger.debug("Starting call events worker ...")
        try:
            self.handler = await self.container.get(CallEventsHandler)
            self.broker = RabbitBroker(url=config.rabbitmq.url, logger=None)

            @self.broker.subscriber(config.rabbitmq.call_events_queue)
            async def handle_call_event(data: dict, msg: RabbitMessage):
                await self.handler.handle_message(data, msg)

            await self.broker.start()
            logger.info(f"Consuming call events from '{config.rabbitmq.call_events_queue}'")

        except Exception as e:
            logger.error(f"Failed to start call events worker: {e}")
            self.broker = None

    async def stop(self):
        """ Остановить потребителя """
        if self.broker is None:
            return

        try:
            await self.broker.stop()
            logger.debug("Call events worker stopped")
        except Exception as e:
            logger.error(f"Error during call events worker cleanup: {e}")
        finally:
            self.broker = None


def check_jwt_secret(auth_config: AuthConfig = None, debug: bool = None) -> None:
    """
    Секрет JWT по умолчанию допустим только в режиме отладки
    :raises RuntimeError: JWT_SECRET не задан при DEBUG=false
    """
    auth_config = auth_config or config.auth
    debug = config.debug if debug is None else debug

    if auth_config.jwt_secret != DEFAULT_JWT_SECRET:
        return
    if not debug:
        raise RuntimeError("JWT_SECRET must be set when DEBUG is off")
    logger.warning("JWT_SECRET is not set, using the built-in development secret")


def _socketio_origins():
    return '*' if '*' in config.cors_origins else config.cors_origins


sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=_socketio_origins())


@asynccontextmanager
async def lifespan(app: FastAPI): # noqa
    """Запуск и остановка сервиса"""
    logger.info("Starting Partner Matching Service")
    check_jwt_secret()
    logger.info(
        f"Configuration: Debug={config.debug},"
        f" Log Level={config.log_level},"
        f" Match timeout={config.matching.timeout_ms}ms"
    )

    container = await get_container(sio)
    coordinator = await container.get(SessionCoordinator)
    sio.register_namespace(PartnerNamespace(coordinator))

    # Периодическая очистка очереди
    queue = await container.get(MatchingQueue)
    queue.start(on_expired=coordinator.handle_search_expired)

    worker = CallEventsWorker(container)
    await worker.start()
    logger.info("Partner Matching Service started")
    yield

    await worker.stop()
    await queue.stop()
    await cleanup_container()
    logger.info("Partner Matching Service stopped")


app = FastAPI(title="Partner Matching Service", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware, # noqa
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(queue_router)

# Socket.IO поверх FastAPI: ASGI точка входа для uvicorn
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)

if __name__ == "__main__":
    uvicorn.run(
        'matching_service.main:socket_app',
        host='0.0.0.0',
        port=config.port,
        reload=config.debug
    )
