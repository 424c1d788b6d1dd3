import os
from dataclasses import dataclass
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass
class MatchingConfig:
    """ Конфигурация очереди поиска собеседника """
    timeout_ms: int = int(os.getenv("MATCH_TIMEOUT_MS", 60_000))
    sweep_interval: float = float(os.getenv("MATCH_SWEEP_INTERVAL", 10))  # секунды

    # Ограничение частоты запросов на поиск
    search_rate_limit: int = int(os.getenv("SEARCH_RATE_LIMIT", 5))
    search_rate_window: int = int(os.getenv("SEARCH_RATE_WINDOW", 10))  # секунды


@dataclass
class RedisConfig:
    """ Конфигурация Redis (кэш профилей и предпочтений) """
    url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    profile_ttl: int = int(os.getenv("PROFILE_CACHE_TTL", 3600))
    max_connections: int = 20
    retry_on_timeout: bool = True
    socket_timeout: int = 5
    socket_connect_timeout: int = 5


@dataclass
class RabbitMQConfig:
    """ Конфигурация RabbitMQ """
    url: str = os.getenv("RABBITMQ_URL")

    # Очередь событий завершения звонков
    call_events_queue: str = os.getenv("CALL_EVENTS_QUEUE", "call_events")


DEFAULT_JWT_SECRET = "change-me"


@dataclass
class AuthConfig:
    """ Конфигурация проверки JWT при подключении сокета """
    jwt_secret: str = os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    user_id_claim: str = os.getenv("JWT_USER_ID_CLAIM", "id")


@dataclass
class ServiceConfig:

    debug: bool = _env_bool("DEBUG", "true")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    port: int = int(os.getenv("PORT", 5000))
    cors_origins: List[str] = None

    # Конфигурации компонентов
    matching: MatchingConfig = None
    redis: RedisConfig = None
    rabbitmq: RabbitMQConfig = None
    auth: AuthConfig = None

    def __post_init__(self):
        if self.cors_origins is None:
            self.cors_origins = [
                origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()
            ]
        if self.matching is None: self.matching = MatchingConfig()
        if self.redis is None: self.redis = RedisConfig()
        if self.rabbitmq is None: self.rabbitmq = RabbitMQConfig()
        if self.auth is None: self.auth = AuthConfig()


config = ServiceConfig()
