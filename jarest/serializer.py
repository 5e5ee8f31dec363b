"""
JSON:API document serialization

Records are plain mappings:

    {
        "type": "planet",
        "id": "5c9f...",
        "attributes": {"name": "Jupiter"},
        "relationships": {"moons": {"data": [{"type": "moon", "id": "7e1a..."}]}}
    }

The serializer translates them to and from JSON:API resource documents. Five
inflection serializers determine the wire names, one per kind of name:

- resource_type: the "type" member of resource objects
- resource_type_path: the collection url segment (/typed-models)
- resource_field: attribute and relationship keys in documents
- resource_field_path: the relationship url segment (/planets/1/moons)
- resource_field_param: filter[...] keys and sort fields

Each kind can be configured with `serializer_settings`, the value is an
InflectionSerializer, a list of inflector names or the InflectionSerializer kwargs.
"""

from typing import Any, Dict, List, Mapping, Optional, Union

import pydantic

import jarest
from .errors import SchemaError, ValidationError
from .inflection import InflectionSerializer
from .jsonapi_primitives import RelationshipDocument, ResourceCollectionDocument, ResourceDocument, ResourceObject
from .schema import RecordSchema

DEFAULT_SERIALIZER_SETTINGS: Dict[str, List[str]] = {
    "resource_type": [],
    "resource_type_path": ["pluralize", "dasherize"],
    "resource_field": [],
    "resource_field_path": ["dasherize"],
    "resource_field_param": ["dasherize"],
}

# temporary id of documents that are posted without one
PLACEHOLDER_ID = "__unidentified__"


def _inflection_serializer(setting: Any) -> InflectionSerializer:
    if isinstance(setting, InflectionSerializer):
        return setting
    if isinstance(setting, Mapping):
        return InflectionSerializer(**setting)
    return InflectionSerializer(setting)


def _validation_detail(exc: pydantic.ValidationError) -> str:
    details = []
    for error in exc.errors():
        location = "/".join(str(loc) for loc in error.get("loc", ()))
        details.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "Invalid JSON:API document: " + "; ".join(details)


class Serializer:
    """
    Translate records to JSON:API documents and back

    :param schema: record schema
    :param serializer_settings: {kind: InflectionSerializer | inflector names | kwargs}
    """

    def __init__(self, schema: RecordSchema, serializer_settings: Optional[Mapping[str, Any]] = None) -> None:
        self.schema = schema
        settings: Dict[str, Any] = dict(DEFAULT_SERIALIZER_SETTINGS)
        for kind, setting in (serializer_settings or {}).items():
            if kind not in DEFAULT_SERIALIZER_SETTINGS:
                raise ValueError(f"Unknown serializer setting '{kind}', expected one of: {', '.join(DEFAULT_SERIALIZER_SETTINGS)}")
            settings[kind] = setting
        self.resource_type = _inflection_serializer(settings["resource_type"])
        self.resource_type_path = _inflection_serializer(settings["resource_type_path"])
        self.resource_field = _inflection_serializer(settings["resource_field"])
        self.resource_field_path = _inflection_serializer(settings["resource_field_path"])
        self.resource_field_param = _inflection_serializer(settings["resource_field_param"])

    @property
    def resource_field_param_serializer(self) -> InflectionSerializer:
        """
        translator of the filter and sort query parameter names
        """
        return self.resource_field_param

    def serialize_resource_type_path(self, type: str) -> str:
        return self.resource_type_path.serialize(type)

    def serialize_resource_field_path(self, field: str, type: Optional[str] = None) -> str:
        return self.resource_field_path.serialize(field, type)

    def serialize_identity(self, identity: Any) -> Dict[str, str]:
        type_name = identity["type"] if isinstance(identity, Mapping) else identity[0]
        id_ = identity["id"] if isinstance(identity, Mapping) else identity[1]
        return {"type": self.resource_type.serialize(type_name), "id": str(id_)}

    def serialize_record(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Create the resource object of a record, attributes and relationships
        that aren't defined in the schema are left out
        """
        type_name = record["type"]
        result: Dict[str, Any] = {"type": self.resource_type.serialize(type_name)}
        if record.get("id") is not None:
            result["id"] = str(record["id"])

        attributes = {}
        for name, value in (record.get("attributes") or {}).items():
            if value is None or not self.schema.has_attribute(type_name, name):
                continue
            attributes[self.resource_field.serialize(name, type_name)] = value
        if attributes:
            result["attributes"] = attributes

        relationships = {}
        for name, relationship in (record.get("relationships") or {}).items():
            if not self.schema.has_relationship(type_name, name):
                continue
            data = relationship.get("data") if isinstance(relationship, Mapping) else relationship
            if isinstance(data, list):
                data = [self.serialize_identity(identity) for identity in data]
            elif data is not None:
                data = self.serialize_identity(data)
            relationships[self.resource_field.serialize(name, type_name)] = {"data": data}
        if relationships:
            result["relationships"] = relationships

        return result

    def serialize_document(self, data: Union[None, Mapping[str, Any], List[Mapping[str, Any]]]) -> Dict[str, Any]:
        if data is None:
            return {"data": None}
        if isinstance(data, (list, tuple)):
            return {"data": [self.serialize_record(record) for record in data]}
        return {"data": self.serialize_record(data)}

    def serialize_relationship_document(self, data: Any) -> Dict[str, Any]:
        if data is None:
            return {"data": None}
        if isinstance(data, list):
            return {"data": [self.serialize_identity(identity) for identity in data]}
        return {"data": self.serialize_identity(data)}

    def deserialize_type(self, type_name: str) -> str:
        result = self.resource_type.deserialize(type_name)
        if not self.schema.has_model(result):
            raise SchemaError(description=f"Schema: Model '{result}' not defined")
        return result

    def deserialize_identity(self, identity: Any) -> Dict[str, str]:
        return {"type": self.deserialize_type(identity.type), "id": identity.id}

    def deserialize_resource(self, resource: ResourceObject) -> Dict[str, Any]:
        type_name = self.deserialize_type(resource.type)
        record: Dict[str, Any] = {"type": type_name, "id": resource.id}

        attributes = {}
        for key, value in resource.attributes.items():
            name = self.resource_field.deserialize(key, type_name)
            if self.schema.has_attribute(type_name, name):
                attributes[name] = value
            else:
                jarest.log.debug(f"Ignoring attribute '{key}': {type_name} has no attribute {name}")
        if attributes:
            record["attributes"] = attributes

        relationships = {}
        for key, relationship in resource.relationships.items():
            name = self.resource_field.deserialize(key, type_name)
            if not self.schema.has_relationship(type_name, name):
                jarest.log.debug(f"Ignoring relationship '{key}': {type_name} has no relationship {name}")
                continue
            if "data" not in relationship.model_fields_set:
                # links or meta only: the relationship is left as it is
                continue
            data = relationship.data
            if isinstance(data, list):
                relationships[name] = {"data": [self.deserialize_identity(identity) for identity in data]}
            elif data is not None:
                relationships[name] = {"data": self.deserialize_identity(data)}
            else:
                relationships[name] = {"data": None}
        if relationships:
            record["relationships"] = relationships

        return record

    def deserialize_document(self, document: Any) -> Optional[Dict[str, Any]]:
        """
        :param document: {"data": resource object}
        :return: record
        """
        try:
            parsed = ResourceDocument.model_validate(document)
        except pydantic.ValidationError as exc:
            raise ValidationError(_validation_detail(exc))
        if parsed.data is None:
            return None
        return self.deserialize_resource(parsed.data)

    def deserialize_documents(self, document: Any) -> List[Dict[str, Any]]:
        """
        :param document: {"data": [resource objects]}
        :return: records
        """
        try:
            parsed = ResourceCollectionDocument.model_validate(document)
        except pydantic.ValidationError as exc:
            raise ValidationError(_validation_detail(exc))
        return [self.deserialize_resource(resource) for resource in parsed.data]

    def deserialize_uninitialized_document(self, document: Any) -> Dict[str, Any]:
        """
        Deserialize the document of a record that doesn't exist yet,
        the id is optional: the record source generates one when it's missing
        """
        data = document.get("data") if isinstance(document, Mapping) else None
        if not isinstance(data, Mapping):
            raise ValidationError("Invalid JSON:API document: data must be a resource object")
        placeholder = data.get("id") is None
        if placeholder:
            document = {**document, "data": {**data, "id": PLACEHOLDER_ID}}
        record = self.deserialize_document(document)
        if record is None:
            raise ValidationError("Invalid JSON:API document: data must be a resource object")
        if placeholder:
            del record["id"]
        return record

    def deserialize_relationship_document(self, document: Any) -> Union[None, Dict[str, str], List[Dict[str, str]]]:
        """
        :param document: {"data": identifier | [identifiers] | null}
        :return: record identity, list of identities or None
        """
        try:
            parsed = RelationshipDocument.model_validate(document)
        except pydantic.ValidationError as exc:
            raise ValidationError(_validation_detail(exc))
        if isinstance(parsed.data, list):
            return [self.deserialize_identity(identity) for identity in parsed.data]
        if parsed.data is None:
            return None
        return self.deserialize_identity(parsed.data)
