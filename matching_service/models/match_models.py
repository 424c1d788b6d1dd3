from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from matching_service.domain.value_objects import MatchPreferences


class PreferencesModel(BaseModel):
    """ Модель предпочтений поиска, присылаемых клиентом """
    model_config = ConfigDict(populate_by_name=True)

    gender: str = Field(default="all", description="all | male | female")
    rating_min: float = Field(default=0, ge=0, le=100, alias="ratingMin", description="Минимальный рейтинг")
    rating_max: float = Field(default=100, ge=0, le=100, alias="ratingMax", description="Максимальный рейтинг")
    level_min: str = Field(default="A1", alias="levelMin", description="Минимальный уровень CEFR")
    level_max: str = Field(default="C2", alias="levelMax", description="Максимальный уровень CEFR")

    def to_domain(self) -> MatchPreferences:
        """ Перевести в доменный объект (проверяет порядок границ) """
        return MatchPreferences.from_dict(self.model_dump())


class SearchRequestModel(BaseModel):
    """ Модель события find-random-partner """
    preferences: Optional[PreferencesModel] = Field(default=None, description="Предпочтения поиска")


class ReadyToTalkModel(BaseModel):
    """ Модель события set-ready-to-talk """
    model_config = ConfigDict(populate_by_name=True)

    status: bool = Field(default=False, description="Готов ли пользователь к разговору")
    level: Optional[str] = Field(default=None, description="Уровень, показываемый другим")
    preferred_topics: List[str] = Field(default_factory=list, alias="preferredTopics")


class CallEventModel(BaseModel):
    """ Сообщение о завершении звонка из RabbitMQ """
    model_config = ConfigDict(coerce_numbers_to_str=True)

    user_id: str = Field(..., min_length=1, description="ID пользователя")
    event: str = Field(..., pattern=r"^call-(ended|disconnected)$", description="Тип события")


class WaitingUserModel(BaseModel):
    user_id: str
    name: str
    waiting_time_ms: int


class QueueStatusResponse(BaseModel):
    """ Модель ответа диагностики очереди """
    waiting_count: int = Field(..., description="Количество ожидающих")
    matched_pair_count: int = Field(..., description="Количество активных пар")
    waiting_users: List[WaitingUserModel] = Field(default_factory=list)
    timestamp: float = Field(..., description="Временная метка")


class ReadyUserModel(BaseModel):
    """ Пользователь, готовый к разговору """
    user_id: str
    ready_since: int
    metadata: Dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """ Модель ответа проверки здоровья """
    status: str = Field(..., description="Статус сервиса")
    queue_size: int = Field(default=0, description="Размер очереди")
    online_users: int = Field(default=0, description="Пользователей онлайн")
    timestamp: float = Field(..., description="Временная метка")
