import logging
import sys

from colorama import init, Fore, Style

from matching_service.config import config


def _to_level(level: str | int) -> int:
    """ Приводит 'debug' / 'DEBUG' / 10 к числовому уровню """
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
    return level if isinstance(level, int) else logging.INFO


class RootLogger:
    """ Логгер на базе корневого регистра, используется в режиме отладки """

    def __init__(self):
        logging.basicConfig(
            level=_to_level(config.log_level),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[logging.StreamHandler()]
        )

    @staticmethod
    def setup_logger(name: str, level: str | int = config.log_level) -> logging.Logger:
        logger = logging.getLogger(name)
        logger.setLevel(_to_level(level))
        return logger


class ColorFormatter(logging.Formatter):
    """ Форматтер, подсвечивающий только уровень записи """

    LEVEL_COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.RED + Style.BRIGHT,
    }
    LEVEL_WIDTH = 8  # len("CRITICAL")
    NAME_WIDTH = 20

    def __init__(self, datefmt: str = "%Y-%m-%d %H:%M:%S"):
        super().__init__(
            "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt
        )

    def format(self, record: logging.LogRecord) -> str:
        levelname, name = record.levelname, record.name

        short_name = name if len(name) <= self.NAME_WIDTH else name[: self.NAME_WIDTH - 3] + "..."
        record.levelname = (
            self.LEVEL_COLORS.get(levelname, "")
            + levelname.ljust(self.LEVEL_WIDTH)
            + Style.RESET_ALL
        )
        record.name = short_name.center(self.NAME_WIDTH)
        try:
            return super().format(record)
        finally:
            # Запись может уйти в другие обработчики
            record.levelname, record.name = levelname, name


class CustomLogger:
    """ Цветной консольный логгер """

    def __init__(self):
        init()  # colorama, для Windows-терминалов

    @staticmethod
    def setup_logger(name: str = None, level: str | int = config.log_level) -> logging.Logger:
        logger = logging.getLogger(name)
        logger.setLevel(_to_level(level))
        logger.handlers.clear()
        logger.propagate = False

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(_to_level(level))
        handler.setFormatter(ColorFormatter())
        logger.addHandler(handler)
        return logger


opt_logger = RootLogger() if config.debug else CustomLogger()
