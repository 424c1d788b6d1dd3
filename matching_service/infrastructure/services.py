import time
from typing import Dict, List, Any

from prometheus_client import Counter, Gauge, Histogram, CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from matching_service.application.interfaces import AbstractMetricsCollector
from matching_service.config import config
from matching_service.logconfig import opt_logger as log

logger = log.setup_logger(name='services')


class RateLimiter:
    """ Ограничитель частоты запросов для предотвращения злоупотреблений """

    def __init__(self, max_requests: int = None, time_window: int = None):
        """
        :param max_requests: Максимальное количество запросов в окне времени
        :param time_window: Окно времени в секундах
        """
        self.max_requests = max_requests or config.matching.search_rate_limit
        self.time_window = time_window or config.matching.search_rate_window
        self._requests: Dict[str, List[float]] = {}  # key -> timestamps
        self._last_prune = time.monotonic()

    def _prune(self, current_time: float) -> None:
        """ Удалить ключи без запросов в текущем окне """
        stale = [
            key for key, timestamps in self._requests.items()
            if not timestamps or current_time - timestamps[-1] >= self.time_window
        ]
        for key in stale:
            del self._requests[key]

        self._last_prune = current_time
        if stale:
            logger.debug(f"Pruned {len(stale)} idle rate limit keys")

    async def is_allowed(self, key: str) -> bool:
        """
        Проверяет, разрешен ли запрос для данного ключа
        :returns True если запрос разрешен, False если превышен лимит
        """
        current_time = time.monotonic()
        if current_time - self._last_prune >= self.time_window:
            self._prune(current_time)

        recent = [
            timestamp for timestamp in self._requests.get(key, [])
            if current_time - timestamp < self.time_window
        ]

        if len(recent) >= self.max_requests:
            self._requests[key] = recent
            logger.debug(f"Rate limit exceeded for key {key}")
            return False

        recent.append(current_time)
        self._requests[key] = recent
        return True


class PrometheusMetricsCollector(AbstractMetricsCollector):
    """
    Сборщик метрик для Prometheus: очередь поиска и присутствие
    """

    def __init__(self):
        self.registry = CollectorRegistry()
        self._init_metrics()

    def _init_metrics(self):
        """ Инициализировать все метрики """

        # Метрики очереди ожидания
        self.queue_size = Gauge(
            'matching_queue_size',
            'Users currently waiting for a partner',
            registry=self.registry
        )

        self.matched_pairs = Gauge(
            'matching_active_pairs',
            'Currently active matched pairs',
            registry=self.registry
        )

        self.queue_wait_time = Histogram(
            'matching_queue_wait_time_seconds',
            'Time the earlier user waited before being matched',
            buckets=(0.5, 1, 2, 5, 10, 20, 30, 45, 60),
            registry=self.registry
        )

        # Метрики поиска
        self.search_requests_total = Counter(
            'matching_search_requests_total',
            'Total number of partner search requests',
            registry=self.registry
        )

        self.search_results_total = Counter(
            'matching_search_results_total',
            'Partner search outcomes',
            ['result'],  # matched, canceled, expired
            registry=self.registry
        )

        # Метрики присутствия
        self.online_users = Gauge(
            'presence_online_users',
            'Users holding a live realtime connection',
            registry=self.registry
        )

        # Метрики ошибок
        self.errors_total = Counter(
            'matching_errors_total',
            'Total number of errors by type',
            ['error_type', 'user_id_present'],
            registry=self.registry
        )

    async def record_search_request(self, user_id: str) -> None:
        self.search_requests_total.inc()

    async def record_match(self, wait_time_ms: int) -> None:
        """
        Записать найденную пару
        :param wait_time_ms: Сколько ждал участник, стоявший в очереди
        """
        self.search_results_total.labels(result='matched').inc()
        self.queue_wait_time.observe(max(wait_time_ms, 0) / 1000)

    async def record_search_canceled(self) -> None:
        self.search_results_total.labels(result='canceled').inc()

    async def record_search_expired(self, count: int) -> None:
        self.search_results_total.labels(result='expired').inc(count)

    async def record_queue_size(self, waiting_count: int, matched_pair_count: int) -> None:
        self.queue_size.set(waiting_count)
        self.matched_pairs.set(matched_pair_count)

    async def record_online_users(self, count: int) -> None:
        self.online_users.set(count)

    async def record_error(self, error_type: str, user_id: str = None) -> None:
        """
        Записать ошибку
        :param error_type: Тип ошибки
        :param user_id: ID пользователя (опционально)
        """
        self.errors_total.labels(
            error_type=error_type,
            user_id_present='true' if user_id is not None else 'false'
        ).inc()

    async def get_metrics(self) -> Dict[str, Any]:
        """ Получить метрики в текстовом формате Prometheus """
        return {
            'prometheus_metrics': generate_latest(self.registry).decode('utf-8'),
            'content_type': CONTENT_TYPE_LATEST,
            'timestamp': time.time()
        }

    async def get_health_status(self) -> Dict[str, Any]:
        """
        Получить статус здоровья на основе метрик
        :returns Словарь со статусом здоровья
        """
        queue_size = int(self.registry.get_sample_value('matching_queue_size') or 0)

        health_status = 'healthy'
        if queue_size > 1000:
            health_status = 'warning'

        return {
            'status': health_status,
            'queue_size': queue_size,
            'online_users': int(self.registry.get_sample_value('presence_online_users') or 0),
            'timestamp': time.time()
        }
