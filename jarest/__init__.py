# flake8: noqa: F401
#
# log and JAREST are imported first: the other modules look them up on the package
#
from .jarest_init import log, JAREST
from .config import ServerSettings, get_config
from .errors import (
    JarestError,
    SchemaError,
    RecordException,
    RecordNotFoundException,
    ValidationError,
    NetworkError,
    ClientError,
    ServerError,
    serialize_error,
)
from .schema import RecordSchema, RelationshipKind
from .inflection import InflectionSerializer
from .params import FilterParam, SortParam, SortOrder, deserialize_filter_params, deserialize_sort_params
from .query import RecordIdentity, build_query, build_transform
from .serializer import Serializer
from .sources import RecordSource, MemorySource, SQLSource, JSONAPISource
from .router import RouteDescriptor, build_route_table, create_jsonapi_router, create_app, install_jsonapi_exception_handlers
from .__about__ import __version__, __description__

__all__ = (
    "__version__",
    "__description__",
    #
    "log",
    "JAREST",
    "ServerSettings",
    "get_config",
    # schema:
    "RecordSchema",
    "RelationshipKind",
    "InflectionSerializer",
    "Serializer",
    # query params:
    "FilterParam",
    "SortParam",
    "SortOrder",
    "deserialize_filter_params",
    "deserialize_sort_params",
    "RecordIdentity",
    "build_query",
    "build_transform",
    # sources:
    "RecordSource",
    "MemorySource",
    "SQLSource",
    "JSONAPISource",
    # routes:
    "RouteDescriptor",
    "build_route_table",
    "create_jsonapi_router",
    "create_app",
    "install_jsonapi_exception_handlers",
    # Errors:
    "JarestError",
    "SchemaError",
    "RecordException",
    "RecordNotFoundException",
    "ValidationError",
    "NetworkError",
    "ClientError",
    "ServerError",
    "serialize_error",
)
