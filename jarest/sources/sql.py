"""
SQL record source

The tables are generated from the record schema with SQLAlchemy Core:

- a table per record type, with an "id" primary key and a column per attribute
- a "<relationship>_id" column for every hasOne relationship
- a hasMany relationship whose inverse is a hasOne relationship uses the
  column of that inverse relationship
- other hasMany relationships use a join table, shared with their inverse

SQLAlchemy calls block, they run in the starlette threadpool. Every transform
runs in a single transaction.
"""

import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    and_,
    create_engine,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import StaticPool
from starlette.concurrency import run_in_threadpool

import jarest
from ..attr_parse import as_utc, parse_filter_value
from ..errors import RecordException, RecordNotFoundException, SchemaError
from ..params import SortOrder
from ..query import (
    AddRecord,
    AddToRelatedRecords,
    FindRecord,
    FindRecords,
    FindRelatedRecord,
    FindRelatedRecords,
    Query,
    RecordIdentity,
    RemoveFromRelatedRecords,
    RemoveRecord,
    ReplaceRelatedRecord,
    ReplaceRelatedRecords,
    Transform,
    UpdateRecord,
)
from ..schema import RecordSchema, RelationshipDefinition, RelationshipKind
from .base import RecordSource, public_record, validate_record

COLUMN_TYPES = {
    "string": String,
    "number": Float,
    "boolean": Boolean,
    "date": Date,
    # values are UTC (see attr_parse.as_utc), sqlite stores them without the offset
    "datetime": DateTime(timezone=True),
}


@dataclass(frozen=True)
class RelationshipStorage:
    """
    Where the links of a relationship are stored: the owner id is stored in
    `own_column` and the related id in `other_column` of `table`

    :param kind: "fk" (column on the owner table), "reverse_fk" (column on the related table) or "join"
    """

    kind: str
    table: Table
    own_column: str
    other_column: str


def _fk_column(relationship: str) -> str:
    return f"{relationship}_id"


def _create_sqlite_engine(url: str) -> Engine:
    # in-memory databases only exist for a single connection
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url)


class SQLSource(RecordSource):
    """
    Record source backed by a SQL database

    :param schema: record schema
    :param url: SQLAlchemy database url, ignored when `engine` is supplied
    :param engine: SQLAlchemy engine
    """

    default_name = "sql"

    def __init__(
        self,
        schema: RecordSchema,
        url: str = "sqlite://",
        engine: Optional[Engine] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(schema, name)
        self.engine = engine if engine is not None else _create_sqlite_engine(url)
        self.metadata = MetaData()
        self.tables: Dict[str, Table] = {}
        self.storage: Dict[tuple, RelationshipStorage] = {}
        self._create_tables()
        self.metadata.create_all(self.engine)
        jarest.log.info(f"Created {len(self.metadata.tables)} tables for {self}")

    #
    # Table generation
    #
    def _create_tables(self) -> None:
        for type_name in self.schema.models:
            columns = [Column("id", String, primary_key=True)]
            for name, attr_def in self.schema.each_attribute(type_name):
                columns.append(Column(name, COLUMN_TYPES[attr_def.type], nullable=True))
            for name, rel in self.schema.each_relationship(type_name):
                if rel.kind is RelationshipKind.HAS_ONE:
                    columns.append(Column(_fk_column(name), String, nullable=True, index=True))
            self.tables[type_name] = Table(type_name, self.metadata, *columns)

        for type_name in self.schema.models:
            for name, rel in self.schema.each_relationship(type_name):
                self.storage[(type_name, name)] = self._relationship_storage(type_name, name, rel)

    def _relationship_storage(self, type_name: str, name: str, rel: RelationshipDefinition) -> RelationshipStorage:
        if not rel.is_many:
            return RelationshipStorage("fk", self.tables[type_name], "id", _fk_column(name))

        inverse = self.schema.relationship_def(rel.type, rel.inverse) if rel.inverse else None
        if inverse is not None and not inverse.is_many:
            return RelationshipStorage("reverse_fk", self.tables[rel.type], _fk_column(rel.inverse), "id")

        keys = sorted({f"{type_name}_{name}", f"{rel.type}_{rel.inverse}"} if inverse is not None else {f"{type_name}_{name}"})
        table_name = "__".join(keys)
        table = self.metadata.tables.get(table_name)
        if table is None:
            table = Table(
                table_name,
                self.metadata,
                Column("pk", Integer, primary_key=True, autoincrement=True),
                Column("left_id", String, nullable=False, index=True),
                Column("right_id", String, nullable=False, index=True),
            )
        if keys[0] == f"{type_name}_{name}":
            return RelationshipStorage("join", table, "left_id", "right_id")
        return RelationshipStorage("join", table, "right_id", "left_id")

    #
    # Request dispatch, a query or transform runs in the threadpool on a single connection
    #
    async def _query(self, query: Query) -> List[Any]:
        async def perform() -> List[Any]:
            return await run_in_threadpool(self._run_query, query)

        return await self.request_queue.push(perform)

    async def _update(self, transform: Transform) -> List[Any]:
        async def perform() -> List[Any]:
            return await run_in_threadpool(self._run_transform, transform)

        return await self.request_queue.push(perform)

    def _run_query(self, query: Query) -> List[Any]:
        with self.engine.connect() as conn:
            return [self._handler(expression.op)(conn, expression, query.options) for expression in query.expressions]

    def _run_transform(self, transform: Transform) -> List[Any]:
        with self.engine.begin() as conn:
            return [self._handler(operation.op)(conn, operation, transform.options) for operation in transform.operations]

    #
    # Row helpers
    #
    def _record_from_row(self, type_name: str, row: Any) -> Dict[str, Any]:
        mapping = row._mapping
        attributes = {}
        for name, attr_def in self.schema.each_attribute(type_name):
            value = mapping[name]
            if attr_def.type == "number" and isinstance(value, float) and value.is_integer():
                value = int(value)
            elif attr_def.type == "datetime" and isinstance(value, datetime.datetime):
                value = as_utc(value)
            attributes[name] = value
        relationships = {}
        for name, rel in self.schema.each_relationship(type_name):
            if not rel.is_many and mapping[_fk_column(name)] is not None:
                relationships[name] = RecordIdentity(rel.type, mapping[_fk_column(name)])
        return public_record(type_name, mapping["id"], attributes, relationships)

    def _exists(self, conn: Connection, identity: RecordIdentity) -> bool:
        table = self.tables[identity.type]
        return conn.execute(select(table.c.id).where(table.c.id == identity.id)).first() is not None

    def _require(self, conn: Connection, identity: RecordIdentity) -> None:
        self.schema.model(identity.type)
        if not self._exists(conn, identity):
            raise RecordNotFoundException(identity.type, identity.id)

    def _relationship(self, type_name: str, name: str, many: bool) -> RelationshipDefinition:
        rel = self.schema.relationship_def(type_name, name)
        if rel.is_many != many:
            raise SchemaError(description=f"Relationship {type_name}.{name} is {rel.kind.value}")
        return rel

    def _select_records(self, type_name: str, expression: Union[FindRecords, FindRelatedRecords]) -> Any:
        table = self.tables[type_name]
        conditions = []
        for param in expression.filter:
            value = parse_filter_value(self.schema.attribute_type(type_name, param.attribute), param.value)
            conditions.append(table.c[param.attribute] == value)
        stmt = select(table)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        order_by = []
        for param in expression.sort:
            column = table.c[param.attribute]
            order_by.append(column.desc() if param.order is SortOrder.DESCENDING else column.asc())
        return stmt.order_by(*order_by) if order_by else stmt

    def _related_ids(self, conn: Connection, owner: RecordIdentity, name: str) -> List[str]:
        storage = self.storage[(owner.type, name)]
        table = storage.table
        stmt = select(table.c[storage.other_column]).where(
            table.c[storage.own_column] == owner.id, table.c[storage.other_column].is_not(None)
        )
        if storage.kind == "join":
            stmt = stmt.order_by(table.c.pk)
        return [row[0] for row in conn.execute(stmt)]

    #
    # Queries
    #
    def _find_records(self, conn: Connection, expression: FindRecords, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        self.schema.model(expression.type)
        rows = conn.execute(self._select_records(expression.type, expression))
        return [self._record_from_row(expression.type, row) for row in rows]

    def _find_record(self, conn: Connection, expression: FindRecord, options: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self.schema.model(expression.record.type)
        table = self.tables[expression.record.type]
        row = conn.execute(select(table).where(table.c.id == expression.record.id)).first()
        if row is None:
            if options.get("raise_not_found_exceptions"):
                raise RecordNotFoundException(expression.record.type, expression.record.id)
            return None
        return self._record_from_row(expression.record.type, row)

    def _find_related_records(self, conn: Connection, expression: FindRelatedRecords, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        rel = self._relationship(expression.record.type, expression.relationship, many=True)
        self._require(conn, expression.record)
        related_ids = self._related_ids(conn, expression.record, expression.relationship)
        if not related_ids:
            return []
        table = self.tables[rel.type]
        stmt = self._select_records(rel.type, expression).where(table.c.id.in_(related_ids))
        records = [self._record_from_row(rel.type, row) for row in conn.execute(stmt)]
        if not expression.sort:
            # keep the relationship order
            position = {id_: index for index, id_ in enumerate(related_ids)}
            records.sort(key=lambda record: position[record["id"]])
        return records

    def _find_related_record(self, conn: Connection, expression: FindRelatedRecord, options: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rel = self._relationship(expression.record.type, expression.relationship, many=False)
        self._require(conn, expression.record)
        related_ids = self._related_ids(conn, expression.record, expression.relationship)
        if not related_ids:
            return None
        table = self.tables[rel.type]
        row = conn.execute(select(table).where(table.c.id == related_ids[0])).first()
        return self._record_from_row(rel.type, row) if row is not None else None

    #
    # Operations
    #
    def _add_record(self, conn: Connection, operation: AddRecord, options: Dict[str, Any]) -> Dict[str, Any]:
        record = validate_record(self.schema, operation.record)
        identity = RecordIdentity(record["type"], record.get("id") or self.schema.generate_id(record["type"]))
        if self._exists(conn, identity):
            raise RecordException(description=f"Record {identity.type}:{identity.id} already exists")
        conn.execute(insert(self.tables[identity.type]).values(id=identity.id, **record["attributes"]))
        for name, data in record["relationships"].items():
            self._replace(conn, identity, name, data)
        return self._find_record(conn, FindRecord(record=identity), {"raise_not_found_exceptions": True})

    def _update_record(self, conn: Connection, operation: UpdateRecord, options: Dict[str, Any]) -> None:
        record = validate_record(self.schema, operation.record)
        if "id" not in record:
            raise RecordException(description="Record id missing")
        identity = RecordIdentity(record["type"], record["id"])
        if not self._exists(conn, identity):
            if options.get("raise_not_found_exceptions"):
                raise RecordNotFoundException(identity.type, identity.id)
            return None
        if record["attributes"]:
            table = self.tables[identity.type]
            conn.execute(update(table).where(table.c.id == identity.id).values(**record["attributes"]))
        for name, data in record["relationships"].items():
            self._replace(conn, identity, name, data)
        return None

    def _remove_record(self, conn: Connection, operation: RemoveRecord, options: Dict[str, Any]) -> None:
        self.schema.model(operation.record.type)
        if not self._exists(conn, operation.record):
            if options.get("raise_not_found_exceptions"):
                raise RecordNotFoundException(operation.record.type, operation.record.id)
            return None
        self._remove(conn, operation.record)
        return None

    def _replace_related_records(self, conn: Connection, operation: ReplaceRelatedRecords, options: Dict[str, Any]) -> None:
        rel = self._relationship(operation.record.type, operation.relationship, many=True)
        self._require(conn, operation.record)
        self._check_related(rel, operation.related_records)
        self._replace(conn, operation.record, operation.relationship, operation.related_records)

    def _add_to_related_records(self, conn: Connection, operation: AddToRelatedRecords, options: Dict[str, Any]) -> None:
        rel = self._relationship(operation.record.type, operation.relationship, many=True)
        self._require(conn, operation.record)
        self._check_related(rel, [operation.related_record])
        self._link(conn, operation.record, operation.relationship, operation.related_record.id)

    def _remove_from_related_records(self, conn: Connection, operation: RemoveFromRelatedRecords, options: Dict[str, Any]) -> None:
        self._relationship(operation.record.type, operation.relationship, many=True)
        self._require(conn, operation.record)
        self._unlink(conn, operation.record, operation.relationship, operation.related_record.id)

    def _replace_related_record(self, conn: Connection, operation: ReplaceRelatedRecord, options: Dict[str, Any]) -> None:
        rel = self._relationship(operation.record.type, operation.relationship, many=False)
        self._require(conn, operation.record)
        if operation.related_record is not None:
            self._check_related(rel, [operation.related_record])
        self._replace(conn, operation.record, operation.relationship, operation.related_record)

    #
    # Link bookkeeping
    #
    def _check_related(self, rel: RelationshipDefinition, identities: List[RecordIdentity]) -> None:
        for identity in identities:
            if identity.type != rel.type:
                raise RecordException(description=f"Invalid related record {identity.type}:{identity.id}, expected type {rel.type}")

    def _link(self, conn: Connection, owner: RecordIdentity, name: str, related_id: str) -> None:
        storage = self.storage[(owner.type, name)]
        table = storage.table
        if storage.kind == "fk":
            conn.execute(update(table).where(table.c.id == owner.id).values({storage.other_column: related_id}))
        elif storage.kind == "reverse_fk":
            conn.execute(update(table).where(table.c.id == related_id).values({storage.own_column: owner.id}))
        else:
            exists = conn.execute(
                select(table.c.pk).where(table.c[storage.own_column] == owner.id, table.c[storage.other_column] == related_id)
            ).first()
            if exists is None:
                conn.execute(insert(table).values({storage.own_column: owner.id, storage.other_column: related_id}))

    def _unlink(self, conn: Connection, owner: RecordIdentity, name: str, related_id: str) -> None:
        storage = self.storage[(owner.type, name)]
        table = storage.table
        match = and_(table.c[storage.own_column] == owner.id, table.c[storage.other_column] == related_id)
        if storage.kind == "fk":
            conn.execute(update(table).where(match).values({storage.other_column: None}))
        elif storage.kind == "reverse_fk":
            conn.execute(update(table).where(match).values({storage.own_column: None}))
        else:
            conn.execute(delete(table).where(match))

    def _unlink_all(self, conn: Connection, storage: RelationshipStorage, column: str, id_: str) -> None:
        """
        Remove the links with `id_` in `column` (the own or the other column of the storage)
        """
        table = storage.table
        if storage.kind == "join":
            conn.execute(delete(table).where(table.c[column] == id_))
        elif storage.kind == "fk" and column == "id":
            conn.execute(update(table).where(table.c.id == id_).values({storage.other_column: None}))
        elif storage.kind == "reverse_fk" and column == "id":
            conn.execute(update(table).where(table.c.id == id_).values({storage.own_column: None}))
        else:
            conn.execute(update(table).where(table.c[column] == id_).values({column: None}))

    def _replace(self, conn: Connection, owner: RecordIdentity, name: str, data: Any) -> None:
        rel = self.schema.relationship_def(owner.type, name)
        storage = self.storage[(owner.type, name)]
        if rel.is_many:
            self._unlink_all(conn, storage, storage.own_column, owner.id)
            for identity in data or []:
                self._link(conn, owner, name, identity.id)
            return

        inverse = self.schema.relationship_def(rel.type, rel.inverse) if rel.inverse else None
        one_to_one = inverse is not None and not inverse.is_many
        if one_to_one:
            # both sides have their own column
            inverse_storage = self.storage[(rel.type, rel.inverse)]
            previous = self._related_ids(conn, owner, name)
            for previous_id in previous:
                self._unlink_all(conn, inverse_storage, "id", previous_id)
            if data is not None:
                for partner_id in self._related_ids(conn, RecordIdentity(rel.type, data.id), rel.inverse):
                    self._unlink_all(conn, storage, "id", partner_id)
                self._unlink_all(conn, inverse_storage, "id", data.id)
                self._link(conn, RecordIdentity(rel.type, data.id), rel.inverse, owner.id)
        self._unlink_all(conn, storage, "id", owner.id)
        if data is not None:
            self._link(conn, owner, name, data.id)

    def _remove(self, conn: Connection, identity: RecordIdentity) -> None:
        if not self._exists(conn, identity):
            return
        for name, rel in self.schema.each_relationship(identity.type):
            if rel.dependent == "remove":
                for related_id in self._related_ids(conn, identity, name):
                    self._remove(conn, RecordIdentity(rel.type, related_id))
        # links that refer to the record, from any type
        for type_name in self.schema.models:
            for name, rel in self.schema.each_relationship(type_name):
                storage = self.storage[(type_name, name)]
                if rel.type == identity.type:
                    self._unlink_all(conn, storage, storage.other_column, identity.id)
                if type_name == identity.type:
                    self._unlink_all(conn, storage, storage.own_column, identity.id)
        table = self.tables[identity.type]
        conn.execute(delete(table).where(table.c.id == identity.id))

    def dispose(self) -> None:
        self.engine.dispose()
