from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any

from matching_service.domain.exceptions import InvalidPreferencesException, InvalidProfileException


class EnglishLevel(Enum):
    """ Уровень владения языком по шкале CEFR """
    A1 = "A1"
    A2 = "A2"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    C2 = "C2"

    @property
    def index(self) -> int:
        return _LEVEL_ORDER.index(self)

    @classmethod
    def parse(cls, value) -> Optional['EnglishLevel']:
        """ Пустое значение -> None, неизвестное -> ValueError """
        if value is None or value == "":
            return None
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().upper())


_LEVEL_ORDER = list(EnglishLevel)


class GenderPreference(Enum):
    """ Желаемый пол собеседника """
    ALL = "all"
    MALE = "male"
    FEMALE = "female"


def _pick(data: Dict[str, Any], *keys, default=None):
    """ Первое непустое значение по одному из ключей (camelCase или snake_case) """
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return default


@dataclass(frozen=True)
class UserProfile:
    """ Снимок отображаемых данных пользователя на момент входа в очередь """
    name: str = ""
    profile_pic: Optional[str] = None
    level: Optional[EnglishLevel] = None
    country: Optional[str] = None
    gender: Optional[str] = None
    rating: float = 0.0

    def __post_init__(self):
        if not isinstance(self.rating, (int, float)) or isinstance(self.rating, bool):
            raise InvalidProfileException("Rating must be a number")
        if self.level is not None and not isinstance(self.level, EnglishLevel):
            raise InvalidProfileException("Level must be an EnglishLevel instance")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'UserProfile':
        """ Создание профиля из словаря (документ пользователя или кэш) """
        data = data or {}
        try:
            level = EnglishLevel.parse(_pick(data, 'level', 'englishLevel', 'english_level'))
            rating = float(_pick(data, 'rating', default=0))
        except (ValueError, TypeError) as e:
            raise InvalidProfileException(f"Invalid profile data: {e}")

        return cls(
            name=_pick(data, 'name', default=""),
            profile_pic=_pick(data, 'profilePic', 'profile_pic'),
            level=level,
            country=_pick(data, 'country'),
            gender=_pick(data, 'gender'),
            rating=rating
        )

    def to_public_dict(self, user_id: str) -> Dict[str, Any]:
        """ Публичная карточка собеседника для клиента """
        return {
            '_id': user_id,
            'name': self.name,
            'profilePic': self.profile_pic,
            'level': self.level.value if self.level else None,
            'country': self.country,
            'isOnline': True,
            'readyToTalk': True
        }

    def ready_metadata(self) -> Dict[str, Any]:
        """ Метаданные для реестра готовых к разговору """
        return {
            'name': self.name,
            'profilePic': self.profile_pic,
            'level': self.level.value if self.level else None
        }


@dataclass(frozen=True)
class MatchPreferences:
    """ Ограничения на выбор собеседника. По умолчанию - без ограничений """
    gender: GenderPreference = GenderPreference.ALL
    rating_min: float = 0
    rating_max: float = 100
    level_min: EnglishLevel = EnglishLevel.A1
    level_max: EnglishLevel = EnglishLevel.C2

    def __post_init__(self):
        if not isinstance(self.gender, GenderPreference):
            raise InvalidPreferencesException("Gender must be a GenderPreference instance")

        if not isinstance(self.level_min, EnglishLevel) or not isinstance(self.level_max, EnglishLevel):
            raise InvalidPreferencesException("Level bounds must be EnglishLevel instances")

        for value in (self.rating_min, self.rating_max):
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not (0 <= value <= 100):
                raise InvalidPreferencesException("Rating bounds must be numbers between 0 and 100")

        if self.rating_min > self.rating_max:
            raise InvalidPreferencesException("ratingMin must not exceed ratingMax")

        if self.level_min.index > self.level_max.index:
            raise InvalidPreferencesException("levelMin must not exceed levelMax")

    def accepts(self, profile: UserProfile) -> bool:
        """ Подходит ли профиль кандидата под эти предпочтения (одно направление) """
        if self.gender is not GenderPreference.ALL:
            if not profile.gender or profile.gender.strip().lower() != self.gender.value:
                return False

        if not (self.rating_min <= profile.rating <= self.rating_max):
            return False

        # Кандидат без уровня проходит по этой оси
        if profile.level is not None:
            if not (self.level_min.index <= profile.level.index <= self.level_max.index):
                return False

        return True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'MatchPreferences':
        """ Создание предпочтений из словаря клиента или кэша """
        data = data or {}
        try:
            gender = GenderPreference(str(_pick(data, 'gender', default='all')).strip().lower())
            level_min = EnglishLevel.parse(_pick(data, 'levelMin', 'level_min')) or EnglishLevel.A1
            level_max = EnglishLevel.parse(_pick(data, 'levelMax', 'level_max')) or EnglishLevel.C2
            rating_min = float(_pick(data, 'ratingMin', 'rating_min', default=0))
            rating_max = float(_pick(data, 'ratingMax', 'rating_max', default=100))
        except (ValueError, TypeError) as e:
            raise InvalidPreferencesException(f"Invalid preferences: {e}")

        return cls(
            gender=gender,
            rating_min=rating_min,
            rating_max=rating_max,
            level_min=level_min,
            level_max=level_max
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'gender': self.gender.value,
            'ratingMin': self.rating_min,
            'ratingMax': self.rating_max,
            'levelMin': self.level_min.value,
            'levelMax': self.level_max.value
        }
