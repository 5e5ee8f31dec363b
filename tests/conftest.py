from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from jarest import JSONAPISource, MemorySource, RecordSchema, Serializer, ServerSettings, SQLSource, create_app

SCHEMA = {
    "planet": {
        "attributes": {
            "name": {"type": "string"},
            "description": {"type": "string"},
            "createdAt": {"type": "datetime"},
        },
        "relationships": {
            "moons": {"kind": "hasMany", "type": "moon", "inverse": "planet", "dependent": "remove"},
        },
    },
    "moon": {
        "attributes": {"name": {"type": "string"}},
        "relationships": {
            "planet": {"kind": "hasOne", "type": "planet", "inverse": "moons"},
        },
    },
    "typedModel": {
        "attributes": {
            "someText": {"type": "string"},
            "someNumber": {"type": "number"},
            "someDate": {"type": "date"},
            "someDateTime": {"type": "datetime"},
            "someBoolean": {"type": "boolean"},
        },
    },
    "article": {
        "relationships": {
            "tags": {"kind": "hasMany", "type": "tag", "inverse": "articles"},
        },
    },
    "tag": {
        "attributes": {"name": {"type": "string"}},
        "relationships": {
            "articles": {"kind": "hasMany", "type": "article", "inverse": "tags"},
        },
    },
}

# the remote server of the jsonapi subject uses dasherized attribute names
REMOTE_SERIALIZER_SETTINGS = {"resource_field": ["dasherize"]}


@pytest.fixture
def schema() -> RecordSchema:
    return RecordSchema(SCHEMA)


def _memory_subject(schema: RecordSchema) -> SimpleNamespace:
    source = MemorySource(schema)
    return SimpleNamespace(source=source, app=create_app(ServerSettings(source=source)))


def _sql_subject(schema: RecordSchema) -> SimpleNamespace:
    source = SQLSource(schema, "sqlite://")
    return SimpleNamespace(source=source, app=create_app(ServerSettings(source=source)))


def _jsonapi_subject(schema: RecordSchema) -> SimpleNamespace:
    remote_source = MemorySource(schema)
    remote_app = create_app(ServerSettings(source=remote_source, serializer_settings=REMOTE_SERIALIZER_SETTINGS))
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=remote_app))
    source = JSONAPISource(
        schema,
        host="http://remote",
        client=client,
        serializer=Serializer(schema, REMOTE_SERIALIZER_SETTINGS),
    )
    return SimpleNamespace(source=source, app=create_app(ServerSettings(source=source)), remote_source=remote_source)


SUBJECTS = {
    "memory": _memory_subject,
    "sql": _sql_subject,
    "jsonapi": _jsonapi_subject,
}


@pytest.fixture(params=sorted(SUBJECTS))
def subject(request: pytest.FixtureRequest, schema: RecordSchema) -> SimpleNamespace:
    result = SUBJECTS[request.param](schema)
    result.name = request.param
    result.client = TestClient(result.app)
    return result


@pytest.fixture
def memory_client(schema: RecordSchema) -> TestClient:
    return TestClient(_memory_subject(schema).app)
