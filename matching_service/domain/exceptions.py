"""
Domain exceptions - исключения бизнес-логики
"""


class DomainException(Exception):
    """Базовое исключение для domain слоя"""
    pass


class MatchingException(DomainException):
    """Исключения связанные с процессом матчинга"""
    pass


class UserNotFoundException(DomainException):
    """Пользователь не найден в справочнике"""
    pass


class InvalidPreferencesException(DomainException, ValueError):
    """Некорректные предпочтения поиска"""
    pass


class InvalidProfileException(DomainException, ValueError):
    """Некорректный профиль пользователя"""
    pass


class SearchRateLimitedException(MatchingException):
    """Слишком частые запросы на поиск"""
    pass
