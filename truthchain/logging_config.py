import logging.config
import sys

# 요청마다 로그를 쏟아내는 라이브러리 로거
NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore")


def setup_logging(log_level: str = "INFO", library_level: str = "WARNING"):
    """콘솔 로깅 설정

    truthchain 로거는 WARNING 이상을 stderr에도 자세한 형식(파일:줄)으로 남깁니다.
    """
    log_level = log_level.upper()
    library_level = library_level.upper()

    LOGGING_CONFIG = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": "%(asctime)s | %(levelname)-8s | %(name)s\n%(pathname)s:%(lineno)d\n%(message)s",
            },
            "simple": {
                "format": "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s",
            },
        },
        "handlers": {
            "console": {
                "formatter": "simple",
                "class": "logging.StreamHandler",
                "stream": sys.stdout,
            },
            "error_console": {
                "formatter": "detailed",
                "class": "logging.StreamHandler",
                "stream": sys.stderr,
                "level": "WARNING",
            },
        },
        "loggers": {
            "": {  # root logger
                "handlers": ["console"],
                "level": log_level,
                "propagate": True,
            },
            "uvicorn.error": {
                "handlers": ["console", "error_console"],
                "level": log_level,
                "propagate": False,
            },
            "uvicorn.access": {
                "handlers": ["console"],
                "level": log_level,
                "propagate": False,
            },
            "truthchain": {
                "handlers": ["console", "error_console"],
                "level": log_level,
                "propagate": False,
            },
        },
    }
    for name in NOISY_LOGGERS:
        LOGGING_CONFIG["loggers"][name] = {
            "handlers": ["console"],
            "level": library_level,
            "propagate": False,
        }
    logging.config.dictConfig(LOGGING_CONFIG)
