# -*- coding: utf-8 -*-
#
# JSON:API routes
#
# For every record type in the schema a fixed set of routes is generated:
#
#   GET    /planets                   findRecords(planet)
#   GET    /planets/{object_id}       findRecord(planet)
#   POST   /planets                   addRecord(planet)
#   PATCH  /planets/{object_id}       updateRecord(planet)
#   DELETE /planets/{object_id}       removeRecord(planet)
#
# and per relationship, on /planets/{object_id}/moons:
#
#   hasMany: GET findRelatedRecords, PATCH replaceRelatedRecords,
#            POST addToRelatedRecords, DELETE removeFromRelatedRecords
#   hasOne:  GET findRelatedRecord, PATCH replaceRelatedRecord
#
# A readonly router only has the GET routes.
#
import json
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

import jarest
from .config import ServerSettings
from .errors import ValidationError, serialize_error
from .inflection import underscore
from .params import parse_query_params, query_builder_params
from .query import RecordIdentity, build_query, to_identity
from .responses import JSONAPIResponse
from .schema import RecordSchema, RelationshipKind
from .serializer import Serializer


@dataclass(frozen=True)
class RouteDescriptor:
    """
    A generated route

    :param name: route name, f.i. "findRecord(planet)", used to build urls
    :param method: http method
    :param path: path relative to the router prefix
    :param operation: query or transform operation the route dispatches to
    :param type: record type
    :param relationship: relationship name for the relationship routes
    :param kind: relationship kind for the relationship routes
    """

    name: str
    method: str
    path: str
    operation: str
    type: str
    relationship: Optional[str] = None
    kind: Optional[RelationshipKind] = None


def build_route_table(schema: RecordSchema, serializer: Serializer, readonly: bool = False) -> Tuple[RouteDescriptor, ...]:
    """
    Create the route descriptors for all record types and relationships in the schema

    :param schema: record schema
    :param serializer: translates the type and relationship names to path segments
    :param readonly: only create the GET routes
    :return: route descriptors, in registration order
    """
    routes: List[RouteDescriptor] = []
    for type_name in schema.models:
        resource_path = f"/{serializer.serialize_resource_type_path(type_name)}"
        resource_path_with_id = f"{resource_path}/{{object_id}}"

        routes.append(RouteDescriptor(f"findRecords({type_name})", "GET", resource_path, "findRecords", type_name))
        routes.append(RouteDescriptor(f"findRecord({type_name})", "GET", resource_path_with_id, "findRecord", type_name))
        if not readonly:
            routes.append(RouteDescriptor(f"addRecord({type_name})", "POST", resource_path, "addRecord", type_name))
            routes.append(RouteDescriptor(f"updateRecord({type_name})", "PATCH", resource_path_with_id, "updateRecord", type_name))
            routes.append(RouteDescriptor(f"removeRecord({type_name})", "DELETE", resource_path_with_id, "removeRecord", type_name))

        for name, rel in schema.each_relationship(type_name):
            path = f"{resource_path_with_id}/{serializer.serialize_resource_field_path(name, type_name)}"
            if rel.kind is RelationshipKind.HAS_MANY:
                operations = [("GET", "findRelatedRecords")]
                if not readonly:
                    operations += [
                        ("PATCH", "replaceRelatedRecords"),
                        ("POST", "addToRelatedRecords"),
                        ("DELETE", "removeFromRelatedRecords"),
                    ]
            else:
                operations = [("GET", "findRelatedRecord")]
                if not readonly:
                    operations.append(("PATCH", "replaceRelatedRecord"))
            for method, operation in operations:
                routes.append(RouteDescriptor(f"{operation}({type_name}, {name})", method, path, operation, type_name, name, rel.kind))

    return tuple(routes)


def _jsonapi_error_document(status_code: int, title: str, detail: str) -> Dict[str, Any]:
    return {"errors": [{"status": str(status_code), "code": status_code, "title": title, "detail": detail}]}


def install_jsonapi_exception_handlers(app: FastAPI) -> None:
    """
    Return JSON:API error documents for the errors raised by the transport,
    f.i. 404 for unknown paths and 405 for methods that aren't routed (readonly)
    """

    @app.exception_handler(RequestValidationError)
    async def _jsonapi_validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONAPIResponse:
        detail = "; ".join(str(error.get("msg", "Validation error")) for error in exc.errors()) or "Request validation failed"
        payload = _jsonapi_error_document(HTTPStatus.BAD_REQUEST.value, "Validation Error", detail)
        return JSONAPIResponse(status_code=HTTPStatus.BAD_REQUEST.value, content=payload)

    @app.exception_handler(StarletteHTTPException)
    async def _jsonapi_starlette_http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONAPIResponse:
        status_code = int(exc.status_code)
        try:
            title = HTTPStatus(status_code).phrase
        except ValueError:
            title = "HTTP Error"
        payload = _jsonapi_error_document(status_code, title, str(exc.detail))
        return JSONAPIResponse(status_code=status_code, content=payload, headers=getattr(exc, "headers", None))


class JSONAPIServer:
    """
    Generates the JSON:API routes of a record source on an APIRouter

    :param settings: ServerSettings
    """

    def __init__(self, settings: ServerSettings) -> None:
        self.settings = settings
        self.source = settings.source
        self.schema: RecordSchema = settings.source.schema
        self.serializer = Serializer(self.schema, settings.serializer_settings)
        self.routes = build_route_table(self.schema, self.serializer, bool(settings.readonly))
        self.router = APIRouter(prefix=settings.prefix or "")
        for route in self.routes:
            self._add_route(route)
        jarest.log.info(f"Exposing {len(self.routes)} routes for {self.source} (readonly: {settings.readonly})")

    def _add_route(self, route: RouteDescriptor) -> None:
        handler_factory = getattr(self, f"_{underscore(route.operation)}")
        self.router.add_api_route(
            route.path,
            handler_factory(route),
            methods=[route.method],
            name=route.name,
            response_class=JSONAPIResponse,
            summary=route.name,
            tags=[route.type],
        )

    #
    # helpers
    #
    def _options(self, request: Request, **extra: Any) -> Dict[str, Any]:
        options: Dict[str, Any] = {"from": "jsonapi", self.source.name: {"headers": request.headers}}
        options.update(extra)
        return options

    def _document_response(self, data: Any, status_code: int = HTTPStatus.OK.value, headers: Optional[Dict[str, str]] = None) -> JSONAPIResponse:
        content = self.serializer.serialize_document(data)
        return JSONAPIResponse(status_code=status_code, content=content, headers=headers)

    async def _error_response(self, exc: Exception) -> JSONAPIResponse:
        status_code, body = await serialize_error(self.source, exc)
        return JSONAPIResponse(status_code=status_code, content=body)

    @staticmethod
    async def _read_document(request: Request) -> Any:
        body = await request.body()
        if not body:
            raise ValidationError("Missing request document")
        try:
            return json.loads(body)
        except ValueError as exc:
            raise ValidationError(f"Invalid JSON in request body: {exc}")

    @staticmethod
    def _require_type(route: RouteDescriptor, record: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if record is None:
            raise ValidationError("Invalid JSON:API payload (missing data object)")
        if record["type"] != route.type:
            raise ValidationError(f"Invalid type '{record['type']}': expected {route.type}")
        return record

    def _related_type(self, route: RouteDescriptor) -> str:
        return self.schema.relationship_def(route.type, route.relationship).type

    async def _relationship_data(self, request: Request, many: bool) -> Any:
        data = self.serializer.deserialize_relationship_document(await self._read_document(request))
        if many and not isinstance(data, list):
            raise ValidationError("Invalid JSON:API payload: data must be an array of resource identifiers")
        if not many and isinstance(data, list):
            raise ValidationError("Invalid JSON:API payload: data must be a resource identifier or null")
        if many:
            return [to_identity(identity) for identity in data]
        return to_identity(data) if data is not None else None

    async def _run_query(self, query: Any, request: Request) -> Any:
        await self.settings.filter_query(query, request)
        return await self.source.query(query)

    #
    # records
    #
    def _find_records(self, route: RouteDescriptor) -> Callable[..., Any]:
        async def handler(request: Request) -> Response:
            try:
                params = parse_query_params(request.query_params)
                term = query_builder_params(
                    self.schema,
                    self.serializer.resource_field_param_serializer,
                    self.source.query_builder.find_records(route.type),
                    route.type,
                    params["filter"],
                    params["sort"],
                )
                query = build_query(term, self._options(request), query_builder=self.source.query_builder)
                records = await self._run_query(query, request)
                return self._document_response(records)
            except Exception as exc:
                return await self._error_response(exc)

        return handler

    def _find_record(self, route: RouteDescriptor) -> Callable[..., Any]:
        async def handler(object_id: str, request: Request) -> Response:
            try:
                term = self.source.query_builder.find_record(RecordIdentity(route.type, object_id))
                options = self._options(request, raise_not_found_exceptions=True)
                query = build_query(term, options, query_builder=self.source.query_builder)
                record = await self._run_query(query, request)
                return self._document_response(record)
            except Exception as exc:
                return await self._error_response(exc)

        return handler

    def _add_record(self, route: RouteDescriptor) -> Callable[..., Any]:
        async def handler(request: Request) -> Response:
            try:
                document = await self._read_document(request)
                record = self._require_type(route, self.serializer.deserialize_uninitialized_document(document))
                created = await self.source.update(lambda t: t.add_record(record), self._options(request))
                location = request.app.url_path_for(f"findRecord({route.type})", object_id=created["id"])
                return self._document_response(created, status_code=HTTPStatus.CREATED.value, headers={"Location": str(location)})
            except Exception as exc:
                return await self._error_response(exc)

        return handler

    def _update_record(self, route: RouteDescriptor) -> Callable[..., Any]:
        async def handler(object_id: str, request: Request) -> Response:
            try:
                document = await self._read_document(request)
                record = self._require_type(route, self.serializer.deserialize_document(document))
                # Enforce JSON:API resource id parity with URL id
                if str(record["id"]) != object_id:
                    raise ValidationError("Body id does not match path id")
                await self.source.update(
                    lambda t: t.update_record({**record, "type": route.type, "id": object_id}),
                    self._options(request, raise_not_found_exceptions=True),
                )
                return Response(status_code=HTTPStatus.NO_CONTENT.value)
            except Exception as exc:
                return await self._error_response(exc)

        return handler

    def _remove_record(self, route: RouteDescriptor) -> Callable[..., Any]:
        async def handler(object_id: str, request: Request) -> Response:
            try:
                await self.source.update(
                    lambda t: t.remove_record(RecordIdentity(route.type, object_id)),
                    self._options(request, raise_not_found_exceptions=True),
                )
                return Response(status_code=HTTPStatus.NO_CONTENT.value)
            except Exception as exc:
                return await self._error_response(exc)

        return handler

    #
    # relationships
    #
    def _find_related_records(self, route: RouteDescriptor) -> Callable[..., Any]:
        async def handler(object_id: str, request: Request) -> Response:
            try:
                params = parse_query_params(request.query_params)
                # filter and sort apply to the related records
                term = query_builder_params(
                    self.schema,
                    self.serializer.resource_field_param_serializer,
                    self.source.query_builder.find_related_records(RecordIdentity(route.type, object_id), route.relationship),
                    self._related_type(route),
                    params["filter"],
                    params["sort"],
                )
                query = build_query(term, self._options(request), query_builder=self.source.query_builder)
                records = await self._run_query(query, request)
                return self._document_response(records)
            except Exception as exc:
                return await self._error_response(exc)

        return handler

    def _find_related_record(self, route: RouteDescriptor) -> Callable[..., Any]:
        async def handler(object_id: str, request: Request) -> Response:
            try:
                term = self.source.query_builder.find_related_record(RecordIdentity(route.type, object_id), route.relationship)
                query = build_query(term, self._options(request), query_builder=self.source.query_builder)
                record = await self._run_query(query, request)
                return self._document_response(record)
            except Exception as exc:
                return await self._error_response(exc)

        return handler

    def _replace_related_records(self, route: RouteDescriptor) -> Callable[..., Any]:
        async def handler(object_id: str, request: Request) -> Response:
            try:
                related = await self._relationship_data(request, many=True)
                await self.source.update(
                    lambda t: t.replace_related_records(RecordIdentity(route.type, object_id), route.relationship, related),
                    self._options(request),
                )
                return Response(status_code=HTTPStatus.NO_CONTENT.value)
            except Exception as exc:
                return await self._error_response(exc)

        return handler

    def _add_to_related_records(self, route: RouteDescriptor) -> Callable[..., Any]:
        async def handler(object_id: str, request: Request) -> Response:
            try:
                related = await self._relationship_data(request, many=True)
                identity = RecordIdentity(route.type, object_id)
                await self.source.update(
                    lambda t: [t.add_to_related_records(identity, route.relationship, item) for item in related],
                    self._options(request),
                )
                return Response(status_code=HTTPStatus.NO_CONTENT.value)
            except Exception as exc:
                return await self._error_response(exc)

        return handler

    def _remove_from_related_records(self, route: RouteDescriptor) -> Callable[..., Any]:
        async def handler(object_id: str, request: Request) -> Response:
            try:
                related = await self._relationship_data(request, many=True)
                identity = RecordIdentity(route.type, object_id)
                await self.source.update(
                    lambda t: [t.remove_from_related_records(identity, route.relationship, item) for item in related],
                    self._options(request),
                )
                return Response(status_code=HTTPStatus.NO_CONTENT.value)
            except Exception as exc:
                return await self._error_response(exc)

        return handler

    def _replace_related_record(self, route: RouteDescriptor) -> Callable[..., Any]:
        async def handler(object_id: str, request: Request) -> Response:
            try:
                related = await self._relationship_data(request, many=False)
                await self.source.update(
                    lambda t: t.replace_related_record(RecordIdentity(route.type, object_id), route.relationship, related),
                    self._options(request),
                )
                return Response(status_code=HTTPStatus.NO_CONTENT.value)
            except Exception as exc:
                return await self._error_response(exc)

        return handler


def create_jsonapi_router(settings: ServerSettings) -> APIRouter:
    """
    :param settings: ServerSettings
    :return: APIRouter with the JSON:API routes of `settings.source`
    """
    return JSONAPIServer(settings).router


def create_app(settings: ServerSettings, **fastapi_kwargs: Any) -> FastAPI:
    """
    Create a FastAPI app that serves the JSON:API routes of `settings.source`
    """
    app = FastAPI(**fastapi_kwargs)
    install_jsonapi_exception_handlers(app)
    app.include_router(create_jsonapi_router(settings))
    return app
