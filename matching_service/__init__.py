"""
Partner matching service: очередь поиска собеседника, реестр присутствия
и координатор сессий для разговорной практики.
"""

__version__ = "0.1.0"
