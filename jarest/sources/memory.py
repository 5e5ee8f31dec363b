"""
In-memory record source
"""

from typing import Any, Dict, Iterable, List, Optional

from ..attr_parse import parse_filter_value
from ..errors import RecordException, RecordNotFoundException, SchemaError
from ..params import FilterParam, SortOrder, SortParam
from ..query import (
    AddRecord,
    AddToRelatedRecords,
    FindRecord,
    FindRecords,
    FindRelatedRecord,
    FindRelatedRecords,
    RecordIdentity,
    RemoveFromRelatedRecords,
    RemoveRecord,
    ReplaceRelatedRecord,
    ReplaceRelatedRecords,
    UpdateRecord,
)
from ..schema import RecordSchema, RelationshipDefinition
from .base import RecordSource, public_record, validate_record


class _StoredRecord:
    __slots__ = ("identity", "attributes", "relationships")

    def __init__(self, identity: RecordIdentity) -> None:
        self.identity = identity
        self.attributes: Dict[str, Any] = {}
        # hasOne: RecordIdentity or None, hasMany: list of RecordIdentity
        self.relationships: Dict[str, Any] = {}


def filter_records(schema: RecordSchema, type_name: str, records: Iterable[_StoredRecord], filters: List[FilterParam]) -> List[_StoredRecord]:
    result = list(records)
    for param in filters:
        value = parse_filter_value(schema.attribute_type(type_name, param.attribute), param.value)
        result = [record for record in result if record.attributes.get(param.attribute) == value]
    return result


def sort_records(records: List[_StoredRecord], sort: List[SortParam]) -> List[_StoredRecord]:
    """
    Sort on multiple attributes, the first sort param is the primary key.
    Records without a value come first in ascending order.
    """
    result = list(records)
    # stable sorts, least significant key first
    for param in reversed(sort):
        result.sort(
            key=lambda record: (record.attributes.get(param.attribute) is not None, record.attributes.get(param.attribute)),
            reverse=param.order is SortOrder.DESCENDING,
        )
    return result


class MemorySource(RecordSource):
    """
    Record source that keeps the records in a dictionary per type
    """

    default_name = "memory"

    def __init__(self, schema: RecordSchema, name: Optional[str] = None) -> None:
        super().__init__(schema, name)
        self._records: Dict[str, Dict[str, _StoredRecord]] = {type_name: {} for type_name in schema.models}

    def reset(self) -> None:
        for records in self._records.values():
            records.clear()

    def _get(self, identity: RecordIdentity) -> Optional[_StoredRecord]:
        return self._records.get(identity.type, {}).get(identity.id)

    def _require(self, identity: RecordIdentity) -> _StoredRecord:
        stored = self._get(identity)
        if stored is None:
            raise RecordNotFoundException(identity.type, identity.id)
        return stored

    def _public(self, stored: _StoredRecord) -> Dict[str, Any]:
        return public_record(stored.identity.type, stored.identity.id, stored.attributes, stored.relationships)

    #
    # Queries
    #
    async def _find_records(self, expression: FindRecords, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        self.schema.model(expression.type)
        records = filter_records(self.schema, expression.type, self._records[expression.type].values(), expression.filter)
        return [self._public(stored) for stored in sort_records(records, expression.sort)]

    async def _find_record(self, expression: FindRecord, options: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self.schema.model(expression.record.type)
        stored = self._get(expression.record)
        if stored is None:
            if options.get("raise_not_found_exceptions"):
                raise RecordNotFoundException(expression.record.type, expression.record.id)
            return None
        return self._public(stored)

    async def _find_related_records(self, expression: FindRelatedRecords, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        rel = self._relationship(expression.record.type, expression.relationship, many=True)
        owner = self._require(expression.record)
        related = [self._get(identity) for identity in owner.relationships.get(expression.relationship, [])]
        records = filter_records(self.schema, rel.type, [stored for stored in related if stored is not None], expression.filter)
        return [self._public(stored) for stored in sort_records(records, expression.sort)]

    async def _find_related_record(self, expression: FindRelatedRecord, options: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self._relationship(expression.record.type, expression.relationship, many=False)
        owner = self._require(expression.record)
        identity = owner.relationships.get(expression.relationship)
        stored = self._get(identity) if identity is not None else None
        return self._public(stored) if stored is not None else None

    #
    # Operations
    #
    async def _add_record(self, operation: AddRecord, options: Dict[str, Any]) -> Dict[str, Any]:
        record = validate_record(self.schema, operation.record)
        identity = RecordIdentity(record["type"], record.get("id") or self.schema.generate_id(record["type"]))
        if self._get(identity) is not None:
            raise RecordException(description=f"Record {identity.type}:{identity.id} already exists")
        stored = _StoredRecord(identity)
        stored.attributes = {name: value for name, value in record["attributes"].items() if value is not None}
        self._records[identity.type][identity.id] = stored
        for name, data in record["relationships"].items():
            self._replace(stored, name, data)
        return self._public(stored)

    async def _update_record(self, operation: UpdateRecord, options: Dict[str, Any]) -> None:
        record = validate_record(self.schema, operation.record)
        if "id" not in record:
            raise RecordException(description="Record id missing")
        stored = self._get(RecordIdentity(record["type"], record["id"]))
        if stored is None:
            if options.get("raise_not_found_exceptions"):
                raise RecordNotFoundException(record["type"], record["id"])
            return None
        for name, value in record["attributes"].items():
            if value is None:
                stored.attributes.pop(name, None)
            else:
                stored.attributes[name] = value
        for name, data in record["relationships"].items():
            self._replace(stored, name, data)
        return None

    async def _remove_record(self, operation: RemoveRecord, options: Dict[str, Any]) -> None:
        stored = self._get(operation.record)
        if stored is None:
            if options.get("raise_not_found_exceptions"):
                raise RecordNotFoundException(operation.record.type, operation.record.id)
            return None
        self._remove(stored)
        return None

    async def _replace_related_records(self, operation: ReplaceRelatedRecords, options: Dict[str, Any]) -> None:
        rel = self._relationship(operation.record.type, operation.relationship, many=True)
        owner = self._require(operation.record)
        self._check_related(rel, operation.related_records)
        self._replace(owner, operation.relationship, operation.related_records)

    async def _add_to_related_records(self, operation: AddToRelatedRecords, options: Dict[str, Any]) -> None:
        rel = self._relationship(operation.record.type, operation.relationship, many=True)
        owner = self._require(operation.record)
        self._check_related(rel, [operation.related_record])
        self._link(owner, operation.relationship, operation.related_record)

    async def _remove_from_related_records(self, operation: RemoveFromRelatedRecords, options: Dict[str, Any]) -> None:
        self._relationship(operation.record.type, operation.relationship, many=True)
        owner = self._require(operation.record)
        self._unlink(owner, operation.relationship, operation.related_record)

    async def _replace_related_record(self, operation: ReplaceRelatedRecord, options: Dict[str, Any]) -> None:
        rel = self._relationship(operation.record.type, operation.relationship, many=False)
        owner = self._require(operation.record)
        if operation.related_record is not None:
            self._check_related(rel, [operation.related_record])
        self._replace(owner, operation.relationship, operation.related_record)

    #
    # Relationship bookkeeping, inverse relationships are kept in sync
    #
    def _relationship(self, type_name: str, name: str, many: bool) -> RelationshipDefinition:
        rel = self.schema.relationship_def(type_name, name)
        if rel.is_many != many:
            raise SchemaError(description=f"Relationship {type_name}.{name} is {rel.kind.value}")
        return rel

    def _check_related(self, rel: RelationshipDefinition, identities: List[RecordIdentity]) -> None:
        for identity in identities:
            if identity.type != rel.type:
                raise RecordException(description=f"Invalid related record {identity.type}:{identity.id}, expected type {rel.type}")

    def _replace(self, stored: _StoredRecord, name: str, data: Any) -> None:
        rel = self.schema.relationship_def(stored.identity.type, name)
        if rel.is_many:
            wanted: List[RecordIdentity] = []
            for identity in data or []:
                if identity not in wanted:
                    wanted.append(identity)
            for identity in list(stored.relationships.get(name, [])):
                if identity not in wanted:
                    self._unlink(stored, name, identity)
            for identity in wanted:
                self._link(stored, name, identity)
            stored.relationships[name] = wanted
        elif data is None:
            current = stored.relationships.get(name)
            if current is not None:
                self._unlink(stored, name, current)
        else:
            self._link(stored, name, data)

    def _link(self, stored: _StoredRecord, name: str, identity: RecordIdentity) -> None:
        rel = self.schema.relationship_def(stored.identity.type, name)
        if rel.is_many:
            current = stored.relationships.setdefault(name, [])
            if identity in current:
                return
            current.append(identity)
        else:
            previous = stored.relationships.get(name)
            if previous == identity:
                return
            stored.relationships[name] = identity
            if previous is not None:
                self._sync_inverse(rel, stored.identity, previous, link=False)
        self._sync_inverse(rel, stored.identity, identity, link=True)

    def _unlink(self, stored: _StoredRecord, name: str, identity: RecordIdentity) -> None:
        rel = self.schema.relationship_def(stored.identity.type, name)
        if rel.is_many:
            current = stored.relationships.get(name, [])
            if identity not in current:
                return
            current.remove(identity)
        else:
            if stored.relationships.get(name) != identity:
                return
            stored.relationships[name] = None
        self._sync_inverse(rel, stored.identity, identity, link=False)

    def _sync_inverse(self, rel: RelationshipDefinition, owner: RecordIdentity, target: RecordIdentity, link: bool) -> None:
        if rel.inverse is None:
            return
        related = self._get(target)
        if related is None:
            return
        if link:
            self._link(related, rel.inverse, owner)
        else:
            self._unlink(related, rel.inverse, owner)

    def _remove(self, stored: _StoredRecord) -> None:
        identity = stored.identity
        if self._get(identity) is not stored:
            return
        del self._records[identity.type][identity.id]
        for name, rel in self.schema.each_relationship(identity.type):
            data = stored.relationships.get(name)
            related = list(data) if rel.is_many else ([data] if data is not None else [])
            for target in related:
                if rel.dependent == "remove":
                    dependent = self._get(target)
                    if dependent is not None:
                        self._remove(dependent)
                else:
                    self._unlink(stored, name, target)
        # relationships without an inverse that refer to the removed record
        for type_name in self.schema.models:
            for name, rel in self.schema.each_relationship(type_name):
                if rel.type != identity.type or rel.inverse is not None:
                    continue
                for other in self._records[type_name].values():
                    data = other.relationships.get(name)
                    if rel.is_many and data and identity in data:
                        data.remove(identity)
                    elif not rel.is_many and data == identity:
                        other.relationships[name] = None
