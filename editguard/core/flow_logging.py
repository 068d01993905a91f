import logging

from editguard.core.config import settings


def _category_enabled(category: str | None) -> bool:
    if not settings.FLOW_LOGS_ENABLED:
        return False
    if category == "presence":
        return settings.FLOW_LOGS_PRESENCE_ENABLED
    if category == "conflict":
        return settings.FLOW_LOGS_CONFLICT_ENABLED
    return True


def flow_info(
    logger: logging.Logger,
    msg: str,
    *args,
    category: str | None = None,
    **kwargs,
) -> None:
    if _category_enabled(category):
        logger.info(msg, *args, **kwargs)
