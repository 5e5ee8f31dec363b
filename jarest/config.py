# Configuration settings live on the JAREST class (see jarest_init.py)
# The get_config function looks them up and falls back to the environment
# ServerSettings collects the per-router settings, unset values fall back to get_config
import os
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import jarest

TRUE_VALUES = ("1", "true", "yes", "on")


def get_config(option: str) -> Optional[Union[bool, str]]:
    """Retrieve a configuration parameter
    :param option: configuration parameter
    :return: configuration value
    """
    result = getattr(jarest.JAREST, option, None)
    env_value = os.environ.get(option, None)
    if env_value is not None:
        result = env_value
    return result


def get_bool_config(option: str) -> bool:
    value = get_config(option)
    if isinstance(value, str):
        return value.strip().lower() in TRUE_VALUES
    return bool(value)


def is_debug() -> bool:
    """
    We use the loglevel to check whether we're running in debug mode
    :return: whether the app is in debug mode
    :rtype: Boolean
    """
    return jarest.log.getEffectiveLevel() < logging.INFO


async def _allow_all(query: Any, request: Any) -> None:
    return None


@dataclass
class ServerSettings:
    """
    Settings of a single JSON:API router, captured once at construction

    :param source: record source the routes dispatch to
    :param prefix: url prefix, defaults to the PREFIX config option
    :param readonly: only register read routes, defaults to the READONLY config option
    :param serializer_settings: naming conventions per serializer kind, see jarest.serializer
    :param filter_query: async hook ``(query, request)`` awaited before every read query is dispatched
    """

    source: Any
    prefix: Optional[str] = None
    readonly: Optional[bool] = None
    serializer_settings: Dict[str, Any] = field(default_factory=dict)
    filter_query: Optional[Callable[[Any, Any], Awaitable[Any]]] = None

    def __post_init__(self) -> None:
        if self.prefix is None:
            self.prefix = str(get_config("PREFIX") or "")
        self.prefix = self.prefix.rstrip("/")
        if self.readonly is None:
            self.readonly = get_bool_config("READONLY")
        if self.filter_query is None:
            self.filter_query = _allow_all
