"""
Query terms, query expressions and transform operations

A query term is a request scoped builder: filter and sort params are attached
to it before it is resolved into a query expression with `to_query_expression`.
`build_query` and `build_transform` wrap expressions and operations with the
options the record source needs to perform them.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, NamedTuple, Optional, Sequence, Union

from .params import FilterParam, SortParam


class RecordIdentity(NamedTuple):
    type: str
    id: str

    def as_dict(self) -> Dict[str, str]:
        return {"type": self.type, "id": self.id}


def to_identity(value: Any) -> RecordIdentity:
    """
    :param value: RecordIdentity, (type, id) tuple or record dict
    """
    if isinstance(value, RecordIdentity):
        return value
    if isinstance(value, dict):
        return RecordIdentity(value["type"], str(value["id"]))
    type_name, id_ = value
    return RecordIdentity(type_name, str(id_))


#
# Query expressions
#
@dataclass
class FindRecords:
    op: ClassVar[str] = "findRecords"
    type: str
    filter: List[FilterParam] = field(default_factory=list)
    sort: List[SortParam] = field(default_factory=list)


@dataclass
class FindRecord:
    op: ClassVar[str] = "findRecord"
    record: RecordIdentity


@dataclass
class FindRelatedRecords:
    op: ClassVar[str] = "findRelatedRecords"
    record: RecordIdentity
    relationship: str
    filter: List[FilterParam] = field(default_factory=list)
    sort: List[SortParam] = field(default_factory=list)


@dataclass
class FindRelatedRecord:
    op: ClassVar[str] = "findRelatedRecord"
    record: RecordIdentity
    relationship: str


QueryExpression = Union[FindRecords, FindRecord, FindRelatedRecords, FindRelatedRecord]


class QueryTerm:
    def __init__(self, expression: QueryExpression) -> None:
        self.expression = expression

    def to_query_expression(self) -> QueryExpression:
        return self.expression


class FindRecordTerm(QueryTerm):
    pass


class FindRelatedRecordTerm(QueryTerm):
    pass


class FilterableTerm(QueryTerm):
    """
    Term of a collection query, filters are combined with AND and
    sort params apply in the order they were added
    """

    expression: Union[FindRecords, FindRelatedRecords]

    def filter(self, *params: FilterParam) -> "FilterableTerm":
        self.expression.filter.extend(params)
        return self

    def sort(self, *params: SortParam) -> "FilterableTerm":
        self.expression.sort.extend(params)
        return self


class FindRecordsTerm(FilterableTerm):
    pass


class FindRelatedRecordsTerm(FilterableTerm):
    pass


class QueryBuilder:
    def find_records(self, type: str) -> FindRecordsTerm:
        return FindRecordsTerm(FindRecords(type=type))

    def find_record(self, record: Any) -> FindRecordTerm:
        return FindRecordTerm(FindRecord(record=to_identity(record)))

    def find_related_records(self, record: Any, relationship: str) -> FindRelatedRecordsTerm:
        return FindRelatedRecordsTerm(FindRelatedRecords(record=to_identity(record), relationship=relationship))

    def find_related_record(self, record: Any, relationship: str) -> FindRelatedRecordTerm:
        return FindRelatedRecordTerm(FindRelatedRecord(record=to_identity(record), relationship=relationship))


#
# Transform operations
#
@dataclass
class AddRecord:
    op: ClassVar[str] = "addRecord"
    record: Dict[str, Any]


@dataclass
class UpdateRecord:
    op: ClassVar[str] = "updateRecord"
    record: Dict[str, Any]


@dataclass
class RemoveRecord:
    op: ClassVar[str] = "removeRecord"
    record: RecordIdentity


@dataclass
class ReplaceRelatedRecords:
    op: ClassVar[str] = "replaceRelatedRecords"
    record: RecordIdentity
    relationship: str
    related_records: List[RecordIdentity]


@dataclass
class AddToRelatedRecords:
    op: ClassVar[str] = "addToRelatedRecords"
    record: RecordIdentity
    relationship: str
    related_record: RecordIdentity


@dataclass
class RemoveFromRelatedRecords:
    op: ClassVar[str] = "removeFromRelatedRecords"
    record: RecordIdentity
    relationship: str
    related_record: RecordIdentity


@dataclass
class ReplaceRelatedRecord:
    op: ClassVar[str] = "replaceRelatedRecord"
    record: RecordIdentity
    relationship: str
    related_record: Optional[RecordIdentity]


Operation = Union[
    AddRecord,
    UpdateRecord,
    RemoveRecord,
    ReplaceRelatedRecords,
    AddToRelatedRecords,
    RemoveFromRelatedRecords,
    ReplaceRelatedRecord,
]


class TransformBuilder:
    def add_record(self, record: Dict[str, Any]) -> AddRecord:
        return AddRecord(record=dict(record))

    def update_record(self, record: Dict[str, Any]) -> UpdateRecord:
        return UpdateRecord(record=dict(record))

    def remove_record(self, record: Any) -> RemoveRecord:
        return RemoveRecord(record=to_identity(record))

    def replace_related_records(self, record: Any, relationship: str, related_records: Sequence[Any]) -> ReplaceRelatedRecords:
        return ReplaceRelatedRecords(
            record=to_identity(record),
            relationship=relationship,
            related_records=[to_identity(related) for related in related_records],
        )

    def add_to_related_records(self, record: Any, relationship: str, related_record: Any) -> AddToRelatedRecords:
        return AddToRelatedRecords(record=to_identity(record), relationship=relationship, related_record=to_identity(related_record))

    def remove_from_related_records(self, record: Any, relationship: str, related_record: Any) -> RemoveFromRelatedRecords:
        return RemoveFromRelatedRecords(
            record=to_identity(record), relationship=relationship, related_record=to_identity(related_record)
        )

    def replace_related_record(self, record: Any, relationship: str, related_record: Any) -> ReplaceRelatedRecord:
        return ReplaceRelatedRecord(
            record=to_identity(record),
            relationship=relationship,
            related_record=to_identity(related_record) if related_record is not None else None,
        )


@dataclass
class Query:
    expressions: List[QueryExpression]
    options: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class Transform:
    operations: List[Operation]
    options: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def build_query(
    query_or_expressions: Any,
    options: Optional[Dict[str, Any]] = None,
    id: Optional[str] = None,
    query_builder: Optional[QueryBuilder] = None,
) -> Query:
    """
    :param query_or_expressions: Query, term, expression, a list of them, or a
        callable that receives the query builder and returns one of those
    :param options: query options, f.i. {"raise_not_found_exceptions": True}
    """
    if isinstance(query_or_expressions, Query):
        query = query_or_expressions
        if options:
            query.options = {**query.options, **options}
        return query
    if callable(query_or_expressions):
        query_or_expressions = query_or_expressions(query_builder or QueryBuilder())
    expressions = [
        item.to_query_expression() if isinstance(item, QueryTerm) else item for item in _as_list(query_or_expressions)
    ]
    query = Query(expressions=expressions, options=dict(options or {}))
    if id is not None:
        query.id = id
    return query


def build_transform(
    transform_or_operations: Any,
    options: Optional[Dict[str, Any]] = None,
    id: Optional[str] = None,
    transform_builder: Optional[TransformBuilder] = None,
) -> Transform:
    """
    :param transform_or_operations: Transform, operation, a list of operations, or a
        callable that receives the transform builder and returns one of those
    """
    if isinstance(transform_or_operations, Transform):
        transform = transform_or_operations
        if options:
            transform.options = {**transform.options, **options}
        return transform
    if callable(transform_or_operations):
        transform_or_operations = transform_or_operations(transform_builder or TransformBuilder())
    transform = Transform(operations=_as_list(transform_or_operations), options=dict(options or {}))
    if id is not None:
        transform.id = id
    return transform
