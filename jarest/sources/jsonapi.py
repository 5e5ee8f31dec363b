"""
Remote JSON:API record source

Forwards queries and transforms to a JSON:API server with an httpx.AsyncClient.
Error responses are raised as ClientError (4xx) and ServerError (5xx), a 404 for
a record or relationship lookup is raised as RecordNotFoundException.
"""

import asyncio
import functools
from http import HTTPStatus
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx
from fastapi.encoders import jsonable_encoder

import jarest
from ..errors import ClientError, NetworkError, RecordNotFoundException, SchemaError, ServerError
from ..jsonapi_primitives import ErrorDocument
from ..params import FilterParam, SortOrder, SortParam
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
from ..schema import RecordSchema
from ..serializer import Serializer
from .base import RecordSource, validate_record


def _wire_record(record: Mapping[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {"type": record["type"], "attributes": dict(record["attributes"])}
    if record.get("id") is not None:
        result["id"] = record["id"]
    relationships = {}
    for name, data in record["relationships"].items():
        if isinstance(data, list):
            relationships[name] = {"data": [identity.as_dict() for identity in data]}
        else:
            relationships[name] = {"data": data.as_dict() if data is not None else None}
    result["relationships"] = relationships
    return result


def _error_description(response: httpx.Response) -> str:
    """
    Use the detail (or title) of the first error in the JSON:API error document
    """
    try:
        errors = ErrorDocument.model_validate(response.json()).errors
    except ValueError:
        # not a json document or not an error document
        errors = []
    if errors and (errors[0].detail or errors[0].title):
        return str(errors[0].detail or errors[0].title)
    return response.reason_phrase or f"HTTP {response.status_code}"


class JSONAPISource(RecordSource):
    """
    Record source that talks to a remote JSON:API server

    :param schema: record schema, it must match the schema of the remote server
    :param host: base url of the remote server, f.i. "http://localhost:8000/api"
    :param client: httpx.AsyncClient, created when not supplied
    :param serializer: serializer with the naming conventions of the remote server
    :param forward_headers: names of the request headers that are passed on to the remote server
    """

    default_name = "jsonapi"

    def __init__(
        self,
        schema: RecordSchema,
        host: str,
        client: Optional[httpx.AsyncClient] = None,
        serializer: Optional[Serializer] = None,
        forward_headers: Sequence[str] = ("authorization",),
        name: Optional[str] = None,
    ) -> None:
        super().__init__(schema, name)
        self.host = host.rstrip("/")
        self.client = client if client is not None else httpx.AsyncClient()
        self.serializer = serializer if serializer is not None else Serializer(schema)
        self.forward_headers = tuple(header.lower() for header in forward_headers)

    async def aclose(self) -> None:
        await self.client.aclose()

    #
    # Every expression and operation is a separate request on the queue
    #
    async def _query(self, query: Query) -> List[Any]:
        tasks = [
            self.request_queue.push(functools.partial(self._perform_expression, expression, query.options))
            for expression in query.expressions
        ]
        return list(await asyncio.gather(*tasks))

    async def _update(self, transform: Transform) -> List[Any]:
        tasks = [
            self.request_queue.push(functools.partial(self._perform_operation, operation, transform.options))
            for operation in transform.operations
        ]
        return list(await asyncio.gather(*tasks))

    #
    # http
    #
    def _url(self, type_name: str, id: Optional[str] = None, relationship: Optional[str] = None) -> str:
        url = f"{self.host}/{self.serializer.serialize_resource_type_path(type_name)}"
        if id is not None:
            url += f"/{id}"
        if relationship is not None:
            url += f"/{self.serializer.serialize_resource_field_path(relationship, type_name)}"
        return url

    def _headers(self, options: Dict[str, Any]) -> Dict[str, str]:
        headers = {"Accept": jarest.JAREST.JSONAPI_MEDIA_TYPE, "Content-Type": jarest.JAREST.JSONAPI_MEDIA_TYPE}
        request_headers = (options.get(self.name) or {}).get("headers") or {}
        for name, value in request_headers.items():
            if name.lower() in self.forward_headers:
                headers[name] = value
        return headers

    def _query_params(self, type_name: str, filters: List[FilterParam], sort: List[SortParam]) -> Dict[str, str]:
        field_param = self.serializer.resource_field_param_serializer
        params = {}
        for param in filters:
            value = param.value
            if isinstance(value, bool):
                value = str(value).lower()
            params[f"{jarest.JAREST.FILTER_PARAM}[{field_param.serialize(param.attribute, type_name)}]"] = str(value)
        if sort:
            params[jarest.JAREST.SORT_PARAM] = ",".join(
                ("-" if param.order is SortOrder.DESCENDING else "") + field_param.serialize(param.attribute, type_name)
                for param in sort
            )
        return params

    async def _request(
        self,
        method: str,
        url: str,
        options: Dict[str, Any],
        document: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        jarest.log.debug(f"{self.name}: {method} {url} {params or ''}")
        try:
            response = await self.client.request(
                method,
                url,
                headers=self._headers(options),
                json=jsonable_encoder(document) if document is not None else None,
                params=params,
            )
        except httpx.HTTPError as exc:
            raise NetworkError(description=f"{method} {url} failed: {exc}")
        if response.status_code >= HTTPStatus.INTERNAL_SERVER_ERROR.value:
            raise ServerError(_error_description(response), response)
        if response.status_code >= HTTPStatus.BAD_REQUEST.value:
            raise ClientError(_error_description(response), response)
        return response

    async def _lookup(
        self, method: str, url: str, options: Dict[str, Any], identity: RecordIdentity, **kwargs: Any
    ) -> httpx.Response:
        """
        Request on a record url, a 404 means the record doesn't exist
        """
        try:
            return await self._request(method, url, options, **kwargs)
        except ClientError as exc:
            if exc.response.status_code == HTTPStatus.NOT_FOUND.value:
                raise RecordNotFoundException(identity.type, identity.id, description=exc.description or None)
            raise

    def _check_relationship(self, type_name: str, name: str, many: bool) -> Any:
        rel = self.schema.relationship_def(type_name, name)
        if rel.is_many != many:
            raise SchemaError(description=f"Relationship {type_name}.{name} is {rel.kind.value}")
        return rel

    #
    # Queries
    #
    async def _find_records(self, expression: FindRecords, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        self.schema.model(expression.type)
        params = self._query_params(expression.type, expression.filter, expression.sort)
        response = await self._request("GET", self._url(expression.type), options, params=params)
        return self.serializer.deserialize_documents(response.json())

    async def _find_record(self, expression: FindRecord, options: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self.schema.model(expression.record.type)
        url = self._url(expression.record.type, expression.record.id)
        try:
            response = await self._lookup("GET", url, options, expression.record)
        except RecordNotFoundException:
            if options.get("raise_not_found_exceptions"):
                raise
            return None
        return self.serializer.deserialize_document(response.json())

    async def _find_related_records(self, expression: FindRelatedRecords, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        rel = self._check_relationship(expression.record.type, expression.relationship, many=True)
        url = self._url(expression.record.type, expression.record.id, expression.relationship)
        params = self._query_params(rel.type, expression.filter, expression.sort)
        response = await self._lookup("GET", url, options, expression.record, params=params)
        return self.serializer.deserialize_documents(response.json())

    async def _find_related_record(self, expression: FindRelatedRecord, options: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self._check_relationship(expression.record.type, expression.relationship, many=False)
        url = self._url(expression.record.type, expression.record.id, expression.relationship)
        response = await self._lookup("GET", url, options, expression.record)
        return self.serializer.deserialize_document(response.json())

    #
    # Operations
    #
    async def _add_record(self, operation: AddRecord, options: Dict[str, Any]) -> Dict[str, Any]:
        record = validate_record(self.schema, operation.record)
        document = self.serializer.serialize_document(_wire_record(record))
        response = await self._request("POST", self._url(record["type"]), options, document=document)
        return self.serializer.deserialize_document(response.json())

    async def _update_record(self, operation: UpdateRecord, options: Dict[str, Any]) -> None:
        record = validate_record(self.schema, operation.record)
        identity = RecordIdentity(record["type"], record.get("id", ""))
        document = self.serializer.serialize_document(_wire_record(record))
        try:
            await self._lookup("PATCH", self._url(identity.type, identity.id), options, identity, document=document)
        except RecordNotFoundException:
            if options.get("raise_not_found_exceptions"):
                raise
        return None

    async def _remove_record(self, operation: RemoveRecord, options: Dict[str, Any]) -> None:
        self.schema.model(operation.record.type)
        try:
            await self._lookup("DELETE", self._url(operation.record.type, operation.record.id), options, operation.record)
        except RecordNotFoundException:
            if options.get("raise_not_found_exceptions"):
                raise
        return None

    async def _replace_related_records(self, operation: ReplaceRelatedRecords, options: Dict[str, Any]) -> None:
        self._check_relationship(operation.record.type, operation.relationship, many=True)
        url = self._url(operation.record.type, operation.record.id, operation.relationship)
        document = self.serializer.serialize_relationship_document(list(operation.related_records))
        await self._lookup("PATCH", url, options, operation.record, document=document)

    async def _add_to_related_records(self, operation: AddToRelatedRecords, options: Dict[str, Any]) -> None:
        self._check_relationship(operation.record.type, operation.relationship, many=True)
        url = self._url(operation.record.type, operation.record.id, operation.relationship)
        document = self.serializer.serialize_relationship_document([operation.related_record])
        await self._lookup("POST", url, options, operation.record, document=document)

    async def _remove_from_related_records(self, operation: RemoveFromRelatedRecords, options: Dict[str, Any]) -> None:
        self._check_relationship(operation.record.type, operation.relationship, many=True)
        url = self._url(operation.record.type, operation.record.id, operation.relationship)
        document = self.serializer.serialize_relationship_document([operation.related_record])
        await self._lookup("DELETE", url, options, operation.record, document=document)

    async def _replace_related_record(self, operation: ReplaceRelatedRecord, options: Dict[str, Any]) -> None:
        self._check_relationship(operation.record.type, operation.relationship, many=False)
        url = self._url(operation.record.type, operation.record.id, operation.relationship)
        document = self.serializer.serialize_relationship_document(operation.related_record)
        await self._lookup("PATCH", url, options, operation.record, document=document)
