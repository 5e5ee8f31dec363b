# -*- coding: utf-8 -*-

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class PermissiveModel(BaseModel):
    model_config = ConfigDict(extra="allow")


class ErrorObject(PermissiveModel):
    # every member is optional, remote servers fill in what they have
    id: Optional[Union[int, str]] = None
    status: Optional[Union[int, str]] = None
    code: Optional[Union[int, str]] = None
    title: Optional[str] = None
    detail: Optional[str] = None


class ErrorDocument(PermissiveModel):
    errors: List[ErrorObject] = Field(default_factory=list)


class ResourceIdentifier(PermissiveModel):
    type: str
    id: str


class RelationshipObject(PermissiveModel):
    # to-one: identifier or null, to-many: list of identifiers
    data: Optional[Union[List[ResourceIdentifier], ResourceIdentifier]] = None


class ResourceObject(PermissiveModel):
    type: str
    id: str
    attributes: Dict[str, Any] = Field(default_factory=dict)
    relationships: Dict[str, RelationshipObject] = Field(default_factory=dict)


class ResourceDocument(PermissiveModel):
    data: Optional[ResourceObject]


class ResourceCollectionDocument(PermissiveModel):
    data: List[ResourceObject] = Field(default_factory=list)


class RelationshipDocument(PermissiveModel):
    """
    Request body of the relationship routes
    """

    data: Optional[Union[List[ResourceIdentifier], ResourceIdentifier]]
