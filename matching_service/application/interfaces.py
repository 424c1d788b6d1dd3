from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, TYPE_CHECKING

if TYPE_CHECKING:
    from matching_service.domain.value_objects import UserProfile, MatchPreferences


class AbstractUserDirectory(ABC):
    """Интерфейс справочника пользователей (профили и сохраненные предпочтения)"""

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional["UserProfile"]:
        """Получить отображаемый профиль пользователя"""
        pass

    @abstractmethod
    async def get_preferences(self, user_id: str) -> Optional["MatchPreferences"]:
        """Получить ранее сохраненные предпочтения поиска"""
        pass

    @abstractmethod
    async def save_preferences(self, user_id: str, preferences: "MatchPreferences") -> None:
        """Сохранить новые предпочтения поиска"""
        pass


class AbstractRealtimeTransport(ABC):
    """Порт realtime-транспорта: адресная отправка и рассылка всем"""

    @abstractmethod
    async def emit(self, event: str, payload: Dict[str, Any], to: Any) -> None:
        pass

    @abstractmethod
    async def broadcast(self, event: str, payload: Dict[str, Any]) -> None:
        pass


class AbstractMetricsCollector(ABC):
    """ Интерфейс сборщика метрик """

    @abstractmethod
    async def record_search_request(self, user_id: str) -> None:
        """ Записать запрос на поиск собеседника """
        pass

    @abstractmethod
    async def record_match(self, wait_time_ms: int) -> None:
        """ Записать найденную пару и время ожидания второго участника """
        pass

    @abstractmethod
    async def record_search_canceled(self) -> None:
        pass

    @abstractmethod
    async def record_search_expired(self, count: int) -> None:
        pass

    @abstractmethod
    async def record_queue_size(self, waiting_count: int, matched_pair_count: int) -> None:
        """ Записать размер очереди ожидания и количество пар """
        pass

    @abstractmethod
    async def record_online_users(self, count: int) -> None:
        pass

    @abstractmethod
    async def record_error(self, error_type: str, user_id: str = None) -> None:
        """ Записать ошибку """
        pass

    @abstractmethod
    async def get_metrics(self) -> Dict[str, Any]:
        """ Получить метрики """
        pass

    @abstractmethod
    async def get_health_status(self) -> Dict[str, Any]:
        """ Получить статус здоровья """
        pass
