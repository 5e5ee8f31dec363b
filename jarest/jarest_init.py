import logging
import os
import sys
from typing import Any


class JAREST:
    """Server wide configuration defaults.

    Configuration settings are stored as class variables, ``configure`` and
    ``ServerSettings`` arguments override them and ``get_config`` falls back
    to environment variables of the same name.

    :param LOGLEVEL: loglevel configuration variable, values from logging module (0: trace, .. 50: critical)
    :param PREFIX: url prefix of the generated routes, eg. '/api'
    :param READONLY: only register the read routes
    :param SOURCE_NAME: default name of the record sources
    """

    LOGLEVEL = logging.WARNING
    PREFIX = ""
    READONLY = False
    # key of the source specific request options, f.i. {"memory": {"headers": ...}}
    SOURCE_NAME = None
    JSONAPI_MEDIA_TYPE = "application/vnd.api+json"
    # query-string sort parameter name and the filter[...] prefix
    SORT_PARAM = "sort"
    FILTER_PARAM = "filter"

    @classmethod
    def configure(cls, **kwargs: Any) -> None:
        for conf_name, conf_val in kwargs.items():
            setattr(cls, conf_name, conf_val)
        if "LOGLEVEL" in kwargs:
            log.setLevel(kwargs["LOGLEVEL"])

    @staticmethod
    def init_logging(loglevel: int = logging.WARNING) -> logging.Logger:
        """
        Specify the log format used in the webserver logs
        The webserver will catch stdout so we redirect eveything to sys.stderr
        """
        log = logging.getLogger("jarest")
        if log.level == logging.NOTSET:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            log.setLevel(loglevel)
            log.addHandler(handler)
        return log


#
# logging initialization
#
try:
    DEBUG = os.getenv("DEBUG", logging.WARNING)
    LOGLEVEL = int(DEBUG)
except ValueError:  # pragma: no cover
    print(f'Invalid LogLevel in DEBUG Environment Variable! "{DEBUG}"')
    LOGLEVEL = logging.INFO

log = JAREST.init_logging(LOGLEVEL)
