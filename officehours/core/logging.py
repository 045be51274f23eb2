import logging

from officehours.core import config

_LOGGING_CONFIGURED = False


def configure_logging(level: str | None = None) -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    logging.basicConfig(
        level=(level or config.LOG_LEVEL).upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    _LOGGING_CONFIGURED = True
