"""
JSON:API query parameter deserialization

https://jsonapi.org/format/#fetching-filtering
https://jsonapi.org/format/#fetching-sorting

Filter keys and sort fields arrive in the wire format, they're translated to
internal attribute names relative to a record type and validated against the
schema. Parameters that don't refer to an attribute of the type are dropped
silently: unknown or foreign query parameters never fail a request.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import jarest
from .inflection import InflectionSerializer
from .schema import RecordSchema


class SortOrder(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


@dataclass(frozen=True)
class FilterParam:
    attribute: str
    value: Any
    op: str = "equal"


@dataclass(frozen=True)
class SortParam:
    attribute: str
    order: SortOrder = SortOrder.ASCENDING


def deserialize_filter_params(
    schema: RecordSchema,
    serializer: InflectionSerializer,
    type: str,
    filter: Mapping[str, Any],
) -> List[FilterParam]:
    """
    :param schema: record schema
    :param serializer: field param serializer, translates wire names to attribute names
    :param type: record type the filter applies to (the related type for relationship routes)
    :param filter: {wire name: raw value}
    :return: equality filters on the known attributes
    """
    params: List[FilterParam] = []
    for prop in filter:
        attribute = serializer.deserialize(prop, type)
        if schema.has_attribute(type, attribute):
            params.append(FilterParam(attribute=attribute, value=filter[prop]))
        else:
            jarest.log.debug(f"Ignoring filter[{prop}]: {type} has no attribute {attribute}")
    return params


def deserialize_sort_params(
    schema: RecordSchema,
    serializer: InflectionSerializer,
    type: str,
    sort: str,
) -> List[SortParam]:
    """
    :param sort: comma separated fields, a leading "-" sorts descending
    :return: sort params in the order of the `sort` fields
    """
    params: List[SortParam] = []
    for prop in sort.split(","):
        desc = prop.startswith("-")
        attribute = serializer.deserialize(prop[1:] if desc else prop, type)
        if schema.has_attribute(type, attribute):
            params.append(SortParam(attribute=attribute, order=SortOrder.DESCENDING if desc else SortOrder.ASCENDING))
        else:
            jarest.log.debug(f"Ignoring sort field '{prop}': {type} has no attribute {attribute}")
    return params


def query_builder_params(
    schema: RecordSchema,
    serializer: InflectionSerializer,
    term: Any,
    type: str,
    filter: Optional[Mapping[str, Any]] = None,
    sort: Optional[str] = None,
) -> Any:
    """
    Attach the filter and sort params to a findRecords or findRelatedRecords term
    """
    if filter:
        term = term.filter(*deserialize_filter_params(schema, serializer, type, filter))
    if sort:
        term = term.sort(*deserialize_sort_params(schema, serializer, type, sort))
    return term


def parse_query_params(query_params: Any) -> Dict[str, Any]:
    """
    Extract the filter map and the sort string from the request query parameters

    :param query_params: starlette QueryParams (or any mapping with `multi_items`/`items`)
    :return: {"filter": {wire name: value}, "sort": str or None}
    """
    filter_prefix = f"{jarest.JAREST.FILTER_PARAM}["
    items = query_params.multi_items() if hasattr(query_params, "multi_items") else list(query_params.items())
    filters: Dict[str, Any] = {}
    sort: Optional[str] = None
    for key, value in items:
        if key.startswith(filter_prefix) and key.endswith("]"):
            # a repeated key keeps its last value
            filters[key[len(filter_prefix) : -1]] = value
        elif key == jarest.JAREST.SORT_PARAM:
            sort = value
    return {"filter": filters, "sort": sort or None}
