from http import HTTPStatus
from typing import Any, Dict, Optional

import pytest
from fastapi.testclient import TestClient

from jarest import MemorySource, ServerSettings, create_app

JSONAPI_MEDIA_TYPE = "application/vnd.api+json"


def request(client: TestClient, url: str, method: str = "GET", payload: Optional[Dict[str, Any]] = None, params: Any = None):
    headers = {"accept": JSONAPI_MEDIA_TYPE}
    if method in ("POST", "PATCH", "DELETE") and payload is not None:
        headers["content-type"] = JSONAPI_MEDIA_TYPE
        return client.request(method, url, json=payload, headers=headers, params=params)
    return client.request(method, url, headers=headers, params=params)


def create_earth(client: TestClient):
    return request(client, "/planets", "POST", {"data": {"type": "planet", "attributes": {"name": "Earth"}}})


def create_moon(client: TestClient, earth_id: str):
    payload = {
        "data": {
            "type": "moon",
            "attributes": {"name": "Moon"},
            "relationships": {"planet": {"data": {"type": "planet", "id": earth_id}}},
        }
    }
    return request(client, "/moons", "POST", payload)


def create_tags(client: TestClient) -> None:
    for name in ("a", "c", "b"):
        request(client, "/tags", "POST", {"data": {"type": "tag", "attributes": {"name": name}}})


def test_get_planets_empty(subject):
    response = request(subject.client, "/planets")

    assert response.status_code == HTTPStatus.OK
    assert response.headers["content-type"].startswith(JSONAPI_MEDIA_TYPE)
    assert response.json() == {"data": []}


def test_create_planet(subject):
    response = create_earth(subject.client)

    assert response.status_code == HTTPStatus.CREATED
    data = response.json()["data"]
    assert response.headers["location"] == f"/planets/{data['id']}"
    assert data["type"] == "planet"
    assert data["id"]
    assert data["attributes"] == {"name": "Earth"}


def test_get_planets(subject):
    create_earth(subject.client)

    response = request(subject.client, "/planets")

    assert response.status_code == HTTPStatus.OK
    assert len(response.json()["data"]) == 1


def test_get_planet(subject):
    id_ = create_earth(subject.client).json()["data"]["id"]

    response = request(subject.client, f"/planets/{id_}")

    assert response.status_code == HTTPStatus.OK
    assert response.json()["data"] == {"type": "planet", "id": id_, "attributes": {"name": "Earth"}}


def test_get_planet_not_found(subject):
    response = request(subject.client, "/planets/123")

    assert response.status_code == HTTPStatus.NOT_FOUND
    assert response.headers["content-type"].startswith(JSONAPI_MEDIA_TYPE)
    errors = response.json()["errors"]
    assert len(errors) == 1
    assert errors[0]["title"]
    assert errors[0]["code"] == 404
    assert errors[0]["id"]


def test_failed_request_leaves_queue_empty(subject):
    request(subject.client, "/planets/123")

    assert subject.source.request_queue.length == 0
    assert subject.source.request_queue.error is None


def test_update_planet(subject):
    id_ = create_earth(subject.client).json()["data"]["id"]

    response = request(
        subject.client,
        f"/planets/{id_}",
        "PATCH",
        {"data": {"id": id_, "type": "planet", "attributes": {"name": "Earth 2"}}},
    )
    assert response.status_code == HTTPStatus.NO_CONTENT

    response = request(subject.client, f"/planets/{id_}")
    assert response.status_code == HTTPStatus.OK
    assert response.json()["data"] == {"type": "planet", "id": id_, "attributes": {"name": "Earth 2"}}


def test_update_not_found(subject):
    response = request(
        subject.client,
        "/planets/123",
        "PATCH",
        {"data": {"id": "123", "type": "planet", "attributes": {"name": "Earth 2"}}},
    )

    assert response.status_code == HTTPStatus.NOT_FOUND


def test_update_id_mismatch(subject):
    id_ = create_earth(subject.client).json()["data"]["id"]

    response = request(
        subject.client,
        f"/planets/{id_}",
        "PATCH",
        {"data": {"id": "other", "type": "planet", "attributes": {"name": "Earth 2"}}},
    )

    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_remove_planet(subject):
    id_ = create_earth(subject.client).json()["data"]["id"]

    response = request(subject.client, f"/planets/{id_}", "DELETE")
    assert response.status_code == HTTPStatus.NO_CONTENT

    assert request(subject.client, f"/planets/{id_}").status_code == HTTPStatus.NOT_FOUND
    assert create_earth(subject.client).status_code == HTTPStatus.CREATED


def test_remove_not_found(subject):
    response = request(subject.client, "/planets/123", "DELETE")

    assert response.status_code == HTTPStatus.NOT_FOUND


def test_create_moon(subject):
    id_ = create_earth(subject.client).json()["data"]["id"]

    response = create_moon(subject.client, id_)

    assert response.status_code == HTTPStatus.CREATED
    assert response.json()["data"]["relationships"]["planet"]["data"] == {"type": "planet", "id": id_}


def test_get_planet_moons(subject):
    id_ = create_earth(subject.client).json()["data"]["id"]
    create_moon(subject.client, id_)

    response = request(subject.client, f"/planets/{id_}/moons")

    assert response.status_code == HTTPStatus.OK
    assert len(response.json()["data"]) == 1


def test_get_moon_planet(subject):
    id_ = create_earth(subject.client).json()["data"]["id"]
    moon_id = create_moon(subject.client, id_).json()["data"]["id"]

    response = request(subject.client, f"/moons/{moon_id}/planet")

    assert response.status_code == HTTPStatus.OK
    assert response.json()["data"]["id"] == id_
    assert response.json()["data"]["attributes"] == {"name": "Earth"}


def test_related_records_of_missing_record(subject):
    response = request(subject.client, "/planets/123/moons")

    assert response.status_code == HTTPStatus.NOT_FOUND


def test_remove_planet_removes_moons(subject):
    id_ = create_earth(subject.client).json()["data"]["id"]
    moon_id = create_moon(subject.client, id_).json()["data"]["id"]

    assert request(subject.client, f"/planets/{id_}", "DELETE").status_code == HTTPStatus.NO_CONTENT

    assert request(subject.client, f"/moons/{moon_id}").status_code == HTTPStatus.NOT_FOUND


def test_create_typed_models(subject):
    payload = {
        "data": {
            "type": "typedModel",
            "attributes": {"someText": "Some text", "someNumber": 2, "someBoolean": True},
        }
    }
    id_ = request(subject.client, "/typed-models", "POST", payload).json()["data"]["id"]

    response = request(subject.client, f"/typed-models/{id_}")

    assert response.status_code == HTTPStatus.OK
    assert response.json()["data"]["attributes"] == {"someText": "Some text", "someNumber": 2, "someBoolean": True}


def test_create_typed_model_invalid_value(subject):
    payload = {"data": {"type": "typedModel", "attributes": {"someNumber": "two"}}}

    response = request(subject.client, "/typed-models", "POST", payload)

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert len(response.json()["errors"]) == 1


def test_create_wrong_type(subject):
    response = request(subject.client, "/planets", "POST", {"data": {"type": "moon", "attributes": {"name": "Moon"}}})

    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_create_invalid_document(subject):
    response = request(subject.client, "/planets", "POST", {"data": [{"type": "planet"}]})

    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.json()["errors"][0]["title"] == "Validation Error"


def test_many_to_many(subject):
    tag_id = request(subject.client, "/tags", "POST", {"data": {"type": "tag"}}).json()["data"]["id"]

    response = request(
        subject.client,
        "/articles",
        "POST",
        {"data": {"type": "article", "relationships": {"tags": {"data": [{"type": "tag", "id": tag_id}]}}}},
    )
    assert response.status_code == HTTPStatus.CREATED
    article_id = response.json()["data"]["id"]

    response = request(subject.client, f"/tags/{tag_id}/articles")
    assert response.status_code == HTTPStatus.OK
    assert [article["id"] for article in response.json()["data"]] == [article_id]


def test_relationship_mutations(subject):
    tag_ids = [request(subject.client, "/tags", "POST", {"data": {"type": "tag", "attributes": {"name": name}}}).json()["data"]["id"] for name in "ab"]
    article_id = request(subject.client, "/articles", "POST", {"data": {"type": "article"}}).json()["data"]["id"]
    url = f"/articles/{article_id}/tags"

    response = request(subject.client, url, "POST", {"data": [{"type": "tag", "id": tag_ids[0]}]})
    assert response.status_code == HTTPStatus.NO_CONTENT
    assert [tag["id"] for tag in request(subject.client, url).json()["data"]] == [tag_ids[0]]

    response = request(subject.client, url, "PATCH", {"data": [{"type": "tag", "id": tag_id} for tag_id in tag_ids]})
    assert response.status_code == HTTPStatus.NO_CONTENT
    assert sorted(tag["id"] for tag in request(subject.client, url).json()["data"]) == sorted(tag_ids)

    response = request(subject.client, url, "DELETE", {"data": [{"type": "tag", "id": tag_ids[0]}]})
    assert response.status_code == HTTPStatus.NO_CONTENT
    assert [tag["id"] for tag in request(subject.client, url).json()["data"]] == [tag_ids[1]]

    # inverse relationship
    assert [article["id"] for article in request(subject.client, f"/tags/{tag_ids[1]}/articles").json()["data"]] == [article_id]
    assert request(subject.client, f"/tags/{tag_ids[0]}/articles").json()["data"] == []


def test_replace_related_record(subject):
    earth_id = create_earth(subject.client).json()["data"]["id"]
    mars_id = request(subject.client, "/planets", "POST", {"data": {"type": "planet", "attributes": {"name": "Mars"}}}).json()["data"]["id"]
    moon_id = create_moon(subject.client, earth_id).json()["data"]["id"]

    response = request(subject.client, f"/moons/{moon_id}/planet", "PATCH", {"data": {"type": "planet", "id": mars_id}})
    assert response.status_code == HTTPStatus.NO_CONTENT

    assert request(subject.client, f"/moons/{moon_id}/planet").json()["data"]["id"] == mars_id
    assert request(subject.client, f"/planets/{earth_id}/moons").json()["data"] == []
    assert len(request(subject.client, f"/planets/{mars_id}/moons").json()["data"]) == 1

    response = request(subject.client, f"/moons/{moon_id}/planet", "PATCH", {"data": None})
    assert response.status_code == HTTPStatus.NO_CONTENT
    assert request(subject.client, f"/moons/{moon_id}/planet").json() == {"data": None}


def test_replace_related_records_requires_list(subject):
    article_id = request(subject.client, "/articles", "POST", {"data": {"type": "article"}}).json()["data"]["id"]

    response = request(subject.client, f"/articles/{article_id}/tags", "PATCH", {"data": {"type": "tag", "id": "1"}})

    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_filter(subject):
    create_tags(subject.client)

    response = request(subject.client, "/tags", params={"filter[name]": "b"})

    assert response.status_code == HTTPStatus.OK
    data = response.json()["data"]
    assert len(data) == 1
    assert data[0]["attributes"] == {"name": "b"}


def test_filter_unknown_attribute_is_ignored(subject):
    create_tags(subject.client)

    response = request(subject.client, "/tags", params={"filter[color]": "red"})

    assert response.status_code == HTTPStatus.OK
    assert len(response.json()["data"]) == 3


def test_filter_typed_attributes(subject):
    for number, flag in ((1, True), (2, False), (2, True)):
        payload = {"data": {"type": "typedModel", "attributes": {"someNumber": number, "someBoolean": flag}}}
        request(subject.client, "/typed-models", "POST", payload)

    response = request(subject.client, "/typed-models", params={"filter[some-number]": "2", "filter[some-boolean]": "true"})

    assert response.status_code == HTTPStatus.OK
    assert [item["attributes"] for item in response.json()["data"]] == [{"someNumber": 2, "someBoolean": True}]


def test_sort_asc(subject):
    create_tags(subject.client)

    response = request(subject.client, "/tags", params={"sort": "name"})

    assert response.status_code == HTTPStatus.OK
    assert [tag["attributes"]["name"] for tag in response.json()["data"]] == ["a", "b", "c"]


def test_sort_desc(subject):
    create_tags(subject.client)

    response = request(subject.client, "/tags", params={"sort": "-name"})

    assert response.status_code == HTTPStatus.OK
    assert [tag["attributes"]["name"] for tag in response.json()["data"]] == ["c", "b", "a"]


def test_sort_multiple_fields(subject):
    for text, number in (("b", 1), ("a", 2), ("a", 1)):
        payload = {"data": {"type": "typedModel", "attributes": {"someText": text, "someNumber": number}}}
        request(subject.client, "/typed-models", "POST", payload)

    response = request(subject.client, "/typed-models", params={"sort": "some-text,-some-number,unknown"})

    assert response.status_code == HTTPStatus.OK
    assert [(item["attributes"]["someText"], item["attributes"]["someNumber"]) for item in response.json()["data"]] == [
        ("a", 2),
        ("a", 1),
        ("b", 1),
    ]


def test_filter_related_records(subject):
    id_ = create_earth(subject.client).json()["data"]["id"]
    create_moon(subject.client, id_)
    request(
        subject.client,
        "/moons",
        "POST",
        {"data": {"type": "moon", "attributes": {"name": "Other"}, "relationships": {"planet": {"data": {"type": "planet", "id": id_}}}}},
    )

    response = request(subject.client, f"/planets/{id_}/moons", params={"filter[name]": "Other"})

    assert response.status_code == HTTPStatus.OK
    assert [moon["attributes"]["name"] for moon in response.json()["data"]] == ["Other"]


def test_unknown_path(subject):
    response = request(subject.client, "/stars")

    assert response.status_code == HTTPStatus.NOT_FOUND
    assert response.headers["content-type"].startswith(JSONAPI_MEDIA_TYPE)
    assert response.json()["errors"][0]["status"] == "404"


#
# readonly routers and prefixes
#
@pytest.fixture
def readonly_client(schema):
    return TestClient(create_app(ServerSettings(source=MemorySource(schema), readonly=True)))


@pytest.mark.parametrize(
    "method, url",
    [
        ("POST", "/planets"),
        ("PATCH", "/planets/1"),
        ("DELETE", "/planets/1"),
        ("PATCH", "/planets/1/moons"),
        ("POST", "/planets/1/moons"),
        ("DELETE", "/planets/1/moons"),
        ("PATCH", "/moons/1/planet"),
    ],
)
def test_readonly_rejects_mutations(readonly_client, method, url):
    response = request(readonly_client, url, method, {"data": {"type": "planet", "attributes": {"name": "Earth"}}})

    assert response.status_code == HTTPStatus.METHOD_NOT_ALLOWED


def test_readonly_allows_reads(readonly_client):
    assert request(readonly_client, "/planets").status_code == HTTPStatus.OK
    assert request(readonly_client, "/planets/1").status_code == HTTPStatus.NOT_FOUND


def test_prefix(schema):
    client = TestClient(create_app(ServerSettings(source=MemorySource(schema), prefix="/api/")))

    response = create_earth(client)
    assert response.status_code == HTTPStatus.NOT_FOUND

    response = request(client, "/api/planets", "POST", {"data": {"type": "planet", "attributes": {"name": "Earth"}}})
    assert response.status_code == HTTPStatus.CREATED
    assert response.headers["location"] == f"/api/planets/{response.json()['data']['id']}"


def test_create_with_client_id(memory_client):
    payload = {"data": {"type": "planet", "id": "earth", "attributes": {"name": "Earth"}}}

    response = request(memory_client, "/planets", "POST", payload)

    assert response.status_code == HTTPStatus.CREATED
    assert response.headers["location"] == "/planets/earth"


def test_filter_query_hook(schema):
    source = MemorySource(schema)
    seen = []

    async def filter_query(query, request):
        seen.append((query.expressions[0].op, query.options["from"], request.url.path))

    client = TestClient(create_app(ServerSettings(source=source, filter_query=filter_query)))
    create_earth(client)
    request(client, "/planets")

    assert seen == [("findRecords", "jsonapi", "/planets")]


def test_filter_query_hook_can_reject(schema):
    async def filter_query(query, request):
        raise PermissionError("not allowed")

    client = TestClient(create_app(ServerSettings(source=MemorySource(schema), filter_query=filter_query)))

    response = request(client, "/planets")

    assert response.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
    assert response.json()["errors"][0]["detail"] == ""


def test_invalid_json_body(memory_client):
    response = memory_client.post("/planets", content=b"{not json", headers={"content-type": JSONAPI_MEDIA_TYPE})

    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_datetime_offset_round_trip(subject):
    payload = {"data": {"type": "typedModel", "attributes": {"someDateTime": "2020-01-01T00:00:00+02:00"}}}

    created = request(subject.client, "/typed-models", "POST", payload)
    assert created.status_code == HTTPStatus.CREATED

    response = request(subject.client, f"/typed-models/{created.json()['data']['id']}")

    assert created.json()["data"]["attributes"]["someDateTime"] == "2019-12-31T22:00:00+00:00"
    assert response.json()["data"]["attributes"]["someDateTime"] == "2019-12-31T22:00:00+00:00"


def test_sort_mixed_timezones(subject):
    for value in ("2020-01-02T00:00:00", "2020-01-01T00:00:00Z"):
        request(subject.client, "/typed-models", "POST", {"data": {"type": "typedModel", "attributes": {"someDateTime": value}}})

    response = request(subject.client, "/typed-models", params={"sort": "some-date-time"})

    assert response.status_code == HTTPStatus.OK
    assert [item["attributes"]["someDateTime"] for item in response.json()["data"]] == [
        "2020-01-01T00:00:00+00:00",
        "2020-01-02T00:00:00+00:00",
    ]


def test_update_keeps_relationship_without_data(subject):
    earth_id = create_earth(subject.client).json()["data"]["id"]
    moon_id = create_moon(subject.client, earth_id).json()["data"]["id"]
    payload = {
        "data": {
            "type": "moon",
            "id": moon_id,
            "attributes": {"name": "Luna"},
            "relationships": {"planet": {"links": {"related": f"/moons/{moon_id}/planet"}}},
        }
    }

    assert request(subject.client, f"/moons/{moon_id}", "PATCH", payload).status_code == HTTPStatus.NO_CONTENT

    moon = request(subject.client, f"/moons/{moon_id}").json()["data"]
    assert moon["attributes"] == {"name": "Luna"}
    assert moon["relationships"]["planet"]["data"] == {"type": "planet", "id": earth_id}
