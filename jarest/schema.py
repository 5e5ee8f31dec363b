"""
Record type schema

A schema maps type names to model definitions:

    planet:
      attributes:
        name: {type: string}
      relationships:
        moons: {kind: hasMany, type: moon, inverse: planet, dependent: remove}

Relationship kinds are fixed when the schema is created, they determine the
generated routes and the query operations used for the relationship.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, Any, Dict, Iterator, Mapping, Optional, Tuple, Union

import yaml

from .errors import SchemaError

ATTRIBUTE_TYPES = ("string", "number", "boolean", "date", "datetime")


class RelationshipKind(str, Enum):
    HAS_ONE = "hasOne"
    HAS_MANY = "hasMany"


@dataclass(frozen=True)
class AttributeDefinition:
    type: str = "string"


@dataclass(frozen=True)
class RelationshipDefinition:
    kind: RelationshipKind
    type: str
    inverse: Optional[str] = None
    dependent: Optional[str] = None

    @property
    def is_many(self) -> bool:
        return self.kind is RelationshipKind.HAS_MANY


@dataclass(frozen=True)
class ModelDefinition:
    attributes: Dict[str, AttributeDefinition] = field(default_factory=dict)
    relationships: Dict[str, RelationshipDefinition] = field(default_factory=dict)


def _parse_attribute(type_name: str, name: str, definition: Optional[Mapping[str, Any]]) -> AttributeDefinition:
    attr_type = (definition or {}).get("type", "string")
    if attr_type not in ATTRIBUTE_TYPES:
        raise SchemaError(description=f"Invalid type '{attr_type}' for attribute {type_name}.{name}")
    return AttributeDefinition(type=attr_type)


def _parse_relationship(type_name: str, name: str, definition: Mapping[str, Any]) -> RelationshipDefinition:
    try:
        kind = RelationshipKind(definition.get("kind"))
    except ValueError:
        raise SchemaError(description=f"Invalid kind '{definition.get('kind')}' for relationship {type_name}.{name}")
    target = definition.get("type")
    if not target:
        raise SchemaError(description=f"Missing type for relationship {type_name}.{name}")
    dependent = definition.get("dependent")
    if dependent not in (None, "remove"):
        raise SchemaError(description=f"Invalid dependent '{dependent}' for relationship {type_name}.{name}")
    return RelationshipDefinition(kind=kind, type=target, inverse=definition.get("inverse"), dependent=dependent)


class RecordSchema:
    """
    Read-only lookups on the record types, their attributes and relationships

    :param models: mapping of type name to {"attributes": {...}, "relationships": {...}}
    """

    def __init__(self, models: Mapping[str, Mapping[str, Any]]) -> None:
        self._models: Dict[str, ModelDefinition] = {}
        for type_name, definition in models.items():
            definition = definition or {}
            attributes = {
                name: _parse_attribute(type_name, name, attr_def)
                for name, attr_def in (definition.get("attributes") or {}).items()
            }
            relationships = {
                name: _parse_relationship(type_name, name, rel_def)
                for name, rel_def in (definition.get("relationships") or {}).items()
            }
            self._models[type_name] = ModelDefinition(attributes=attributes, relationships=relationships)
        self._validate_relationships()

    @classmethod
    def from_yaml(cls, stream: Union[str, IO[str]]) -> "RecordSchema":
        """
        Create a schema from a yaml document, the models are read from the
        top level "models" key when present

        :param stream: yaml text or an open file
        """
        document = yaml.safe_load(stream) or {}
        if not isinstance(document, dict):
            raise SchemaError(description="A schema document must be a mapping")
        return cls(document.get("models", document))

    def _validate_relationships(self) -> None:
        for type_name, model in self._models.items():
            for name, rel in model.relationships.items():
                target = self._models.get(rel.type)
                if target is None:
                    raise SchemaError(description=f"Relationship {type_name}.{name} refers to unknown type '{rel.type}'")
                if rel.inverse is not None and rel.inverse not in target.relationships:
                    raise SchemaError(description=f"Inverse '{rel.inverse}' of {type_name}.{name} is not defined on '{rel.type}'")

    @property
    def models(self) -> Tuple[str, ...]:
        return tuple(self._models)

    def has_model(self, type: str) -> bool:
        return type in self._models

    def model(self, type: str) -> ModelDefinition:
        try:
            return self._models[type]
        except KeyError:
            raise SchemaError(description=f"Schema: Model '{type}' not defined")

    def has_attribute(self, type: str, attribute: str) -> bool:
        model = self._models.get(type)
        return model is not None and attribute in model.attributes

    def attribute_type(self, type: str, attribute: str) -> Optional[str]:
        model = self._models.get(type)
        if model is None or attribute not in model.attributes:
            return None
        return model.attributes[attribute].type

    def has_relationship(self, type: str, relationship: str) -> bool:
        model = self._models.get(type)
        return model is not None and relationship in model.relationships

    def relationship_def(self, type: str, relationship: str) -> RelationshipDefinition:
        try:
            return self.model(type).relationships[relationship]
        except KeyError:
            raise SchemaError(description=f"Schema: Relationship '{relationship}' not defined on '{type}'")

    def relationship_kind(self, type: str, relationship: str) -> RelationshipKind:
        return self.relationship_def(type, relationship).kind

    def each_attribute(self, type: str) -> Iterator[Tuple[str, AttributeDefinition]]:
        model = self._models.get(type)
        if model is not None:
            yield from model.attributes.items()

    def each_relationship(self, type: str) -> Iterator[Tuple[str, RelationshipDefinition]]:
        """
        Iterate the relationships of `type` in declaration order
        """
        model = self._models.get(type)
        if model is not None:
            yield from model.relationships.items()

    def generate_id(self, type: Optional[str] = None) -> str:
        return str(uuid.uuid4())
