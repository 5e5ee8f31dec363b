"""
Record source base class and request queue

A record source performs queries and transforms on a store. Every call is
pushed on the request queue of the source, so requests are performed one at a
time. When a request fails, the router clears the queue: the work that the
failing request still had pending is cancelled.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import jarest
from ..attr_parse import parse_attr
from ..config import get_config
from ..errors import RecordException, SchemaError
from ..query import (
    Operation,
    Query,
    QueryBuilder,
    QueryExpression,
    RecordIdentity,
    Transform,
    TransformBuilder,
    build_query,
    build_transform,
    to_identity,
)
from ..inflection import underscore
from ..schema import RecordSchema


class RequestQueue:
    """
    Serializes the requests performed on a record source

    :ivar error: exception of the last failed request, reset by `clear`
    """

    def __init__(self) -> None:
        self.error: Optional[BaseException] = None
        self._tasks: Dict["asyncio.Task[Any]", Optional["asyncio.Task[Any]"]] = {}
        self._lock: Optional[asyncio.Lock] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def lock(self) -> asyncio.Lock:
        # a lock is bound to the loop it's first used in
        loop = asyncio.get_running_loop()
        if self._lock is None or self._loop is not loop:
            self._lock = asyncio.Lock()
            self._loop = loop
        return self._lock

    @property
    def length(self) -> int:
        return len(self._tasks)

    @property
    def empty(self) -> bool:
        return not self._tasks

    def push(self, fn: Callable[[], Awaitable[Any]]) -> "asyncio.Task[Any]":
        """
        Schedule `fn` to run when the requests pushed before it have completed

        :param fn: coroutine function
        :return: task, await it for the result of `fn`
        """
        task = asyncio.ensure_future(self._perform(fn))
        self._tasks[task] = asyncio.current_task()
        task.add_done_callback(self._done)
        return task

    async def _perform(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        async with self.lock:
            try:
                return await fn()
            except Exception as exc:
                self.error = exc
                raise

    def _done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.pop(task, None)
        if not task.cancelled():
            # the exception is handled by the awaiting request
            task.exception()

    async def clear(self) -> None:
        """
        Cancel the pending tasks pushed by the current request and reset the error
        """
        owner = asyncio.current_task()
        pending = [task for task, task_owner in list(self._tasks.items()) if task_owner is owner and not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            jarest.log.debug(f"Cancelled {len(pending)} pending request(s)")
        self.error = None


def validate_record(schema: RecordSchema, record: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Check a record against the schema and parse its attribute values

    :param record: {type, id?, attributes?, relationships?}
    :return: record with parsed attribute values and relationship data as
        RecordIdentity, a list of identities or None
    """
    type_name = record.get("type")
    if not type_name:
        raise RecordException(description="Record type missing")
    schema.model(type_name)

    result: Dict[str, Any] = {"type": type_name, "attributes": {}, "relationships": {}}
    if record.get("id") is not None:
        result["id"] = str(record["id"])

    for name, value in (record.get("attributes") or {}).items():
        attr_type = schema.attribute_type(type_name, name)
        if attr_type is None:
            raise SchemaError(description=f"Schema: Attribute '{name}' not defined on '{type_name}'")
        result["attributes"][name] = parse_attr(attr_type, value, name)

    for name, relationship in (record.get("relationships") or {}).items():
        rel = schema.relationship_def(type_name, name)
        data = relationship.get("data") if isinstance(relationship, Mapping) else relationship
        if rel.is_many:
            if data is None:
                data = []
            if not isinstance(data, (list, tuple)):
                raise RecordException(description=f"Relationship {type_name}.{name} expects a list of identities")
            result["relationships"][name] = [_related_identity(schema, rel.type, item) for item in data]
        else:
            if isinstance(data, (list, tuple)):
                raise RecordException(description=f"Relationship {type_name}.{name} expects a single identity")
            result["relationships"][name] = None if data is None else _related_identity(schema, rel.type, data)

    return result


def _related_identity(schema: RecordSchema, target: str, value: Any) -> RecordIdentity:
    identity = to_identity(value)
    if identity.type != target:
        raise RecordException(description=f"Invalid related record {identity.type}:{identity.id}, expected type {target}")
    return identity


def public_record(
    type_name: str,
    id: str,
    attributes: Mapping[str, Any],
    relationships: Mapping[str, Any],
) -> Dict[str, Any]:
    """
    Record as returned by the sources: null attributes and empty relationships are left out
    """
    record: Dict[str, Any] = {"type": type_name, "id": id}
    attrs = {name: value for name, value in attributes.items() if value is not None}
    if attrs:
        record["attributes"] = attrs
    rels = {}
    for name, data in relationships.items():
        if isinstance(data, (list, tuple)):
            if data:
                rels[name] = {"data": [to_identity(item).as_dict() for item in data]}
        elif data is not None:
            rels[name] = {"data": to_identity(data).as_dict()}
    if rels:
        record["relationships"] = rels
    return record


class RecordSource:
    """
    Base class of the record sources

    Subclasses implement a coroutine per query expression and per operation,
    named after the op: `_find_records`, `_add_record`, ...

    :param schema: record schema
    :param name: source name, used as the key of the source specific request options
    """

    default_name = "source"

    def __init__(self, schema: RecordSchema, name: Optional[str] = None) -> None:
        self.schema = schema
        self.name = name or get_config("SOURCE_NAME") or self.default_name
        self.query_builder = QueryBuilder()
        self.transform_builder = TransformBuilder()
        self.request_queue = RequestQueue()

    async def query(self, query_or_expressions: Any, options: Optional[Dict[str, Any]] = None, id: Optional[str] = None) -> Any:
        """
        :param query_or_expressions: see `jarest.query.build_query`
        :return: the result of a single expression, a list of results for several
        """
        query = build_query(query_or_expressions, options, id, self.query_builder)
        results = await self._query(query)
        return results[0] if len(query.expressions) == 1 else results

    async def update(self, transform_or_operations: Any, options: Optional[Dict[str, Any]] = None, id: Optional[str] = None) -> Any:
        """
        :param transform_or_operations: see `jarest.query.build_transform`
        :return: the result of a single operation, a list of results for several
        """
        transform = build_transform(transform_or_operations, options, id, self.transform_builder)
        results = await self._update(transform)
        return results[0] if len(transform.operations) == 1 else results

    async def _query(self, query: Query) -> List[Any]:
        async def perform() -> List[Any]:
            return [await self._perform_expression(expression, query.options) for expression in query.expressions]

        return await self.request_queue.push(perform)

    async def _update(self, transform: Transform) -> List[Any]:
        async def perform() -> List[Any]:
            return [await self._perform_operation(operation, transform.options) for operation in transform.operations]

        return await self.request_queue.push(perform)

    async def _perform_expression(self, expression: QueryExpression, options: Dict[str, Any]) -> Any:
        return await self._handler(expression.op)(expression, options)

    async def _perform_operation(self, operation: Operation, options: Dict[str, Any]) -> Any:
        return await self._handler(operation.op)(operation, options)

    def _handler(self, op: str) -> Callable[..., Any]:
        handler = getattr(self, f"_{underscore(op)}", None)
        if handler is None:
            raise NotImplementedError(f"{self.__class__.__name__} doesn't support '{op}'")
        return handler

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}>"
