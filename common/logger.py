import logging
from enum import IntEnum
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Level(IntEnum):
    NOTSET = logging.NOTSET
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL

    @classmethod
    def parse(cls, value: str, default: Optional["Level"] = None) -> "Level":
        """
        LOG_LEVEL style value: a level name in any case ("warn" is accepted)
        or its number. Empty means default.
        """
        text = (value or "").strip().upper()
        if not text:
            if default is None:
                raise RuntimeError("log level is empty")
            return default
        if text == "WARN":
            text = "WARNING"
        if text.lstrip("-").isdigit():
            try:
                return cls(int(text))
            except ValueError as e:
                raise RuntimeError(f"unknown log level: {value!r}") from e
        try:
            return cls[text]
        except KeyError as e:
            raise RuntimeError(f"unknown log level: {value!r}") from e


class Logger:
    """Process-wide logger. configure() once in main, tests use their own name."""

    _logger: Optional[logging.Logger] = None

    @classmethod
    def configure(cls, name: str, level: Level | int, *, fmt: str = DEFAULT_FORMAT) -> logging.Logger:
        if cls._logger is not None:
            raise RuntimeError("logger has already been configured")

        logging.basicConfig(level=int(level), format=fmt)
        cls._logger = logging.getLogger(name)
        return cls._logger

    @classmethod
    def configured(cls) -> bool:
        return cls._logger is not None

    @classmethod
    def get(cls) -> logging.Logger:
        if cls._logger is None:
            raise RuntimeError("logger is not configured yet")
        return cls._logger

    @classmethod
    def log(cls, level: Level | int, msg: str, *args, **kwargs) -> None:
        cls.get().log(int(level), msg, *args, **kwargs)

    @classmethod
    def debug(cls, msg: str, *args, **kwargs) -> None:
        cls.get().debug(msg, *args, **kwargs)

    @classmethod
    def info(cls, msg: str, *args, **kwargs) -> None:
        cls.get().info(msg, *args, **kwargs)

    @classmethod
    def warning(cls, msg: str, *args, **kwargs) -> None:
        cls.get().warning(msg, *args, **kwargs)

    @classmethod
    def error(cls, msg: str, *args, **kwargs) -> None:
        cls.get().error(msg, *args, **kwargs)

    @classmethod
    def exception(cls, msg: str, *args, exc_info: bool = True, **kwargs) -> None:
        cls.get().exception(msg, *args, exc_info=exc_info, **kwargs)

    # httpx logs every toncenter request at INFO, telegram and uvicorn are chatty too
    @classmethod
    def silence(cls, *logger_names: str, level: Level | int = Level.CRITICAL) -> None:
        for n in logger_names:
            logging.getLogger(n).setLevel(int(level))
