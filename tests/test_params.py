from starlette.datastructures import QueryParams

from jarest.inflection import InflectionSerializer
from jarest.params import (
    FilterParam,
    SortOrder,
    SortParam,
    deserialize_filter_params,
    deserialize_sort_params,
    parse_query_params,
    query_builder_params,
)
from jarest.query import QueryBuilder

DASHERIZE = InflectionSerializer(["dasherize"])


def test_filter_params(schema):
    params = deserialize_filter_params(schema, DASHERIZE, "typedModel", {"some-text": "a", "some-number": "2"})

    assert params == [
        FilterParam(attribute="someText", value="a", op="equal"),
        FilterParam(attribute="someNumber", value="2", op="equal"),
    ]


def test_filter_params_drop_unknown_fields(schema):
    params = deserialize_filter_params(schema, DASHERIZE, "tag", {"color": "red", "name": "b", "articles": "1"})

    assert params == [FilterParam(attribute="name", value="b")]


def test_filter_params_empty(schema):
    assert deserialize_filter_params(schema, DASHERIZE, "tag", {}) == []


def test_filter_params_unknown_type(schema):
    assert deserialize_filter_params(schema, DASHERIZE, "star", {"name": "b"}) == []


def test_sort_params_order(schema):
    params = deserialize_sort_params(schema, DASHERIZE, "typedModel", "some-text,-some-number,some-boolean")

    assert params == [
        SortParam("someText", SortOrder.ASCENDING),
        SortParam("someNumber", SortOrder.DESCENDING),
        SortParam("someBoolean", SortOrder.ASCENDING),
    ]


def test_sort_params_keep_duplicates(schema):
    params = deserialize_sort_params(schema, DASHERIZE, "tag", "name,-name")

    assert params == [SortParam("name", SortOrder.ASCENDING), SortParam("name", SortOrder.DESCENDING)]


def test_sort_params_drop_invalid_tokens(schema):
    assert deserialize_sort_params(schema, DASHERIZE, "tag", "") == []
    assert deserialize_sort_params(schema, DASHERIZE, "tag", "-") == []
    assert deserialize_sort_params(schema, DASHERIZE, "tag", " name") == []
    assert deserialize_sort_params(schema, DASHERIZE, "tag", "--name") == []
    assert deserialize_sort_params(schema, DASHERIZE, "tag", "color,,-size") == []


def test_compile_is_stateless(schema):
    first = deserialize_sort_params(schema, DASHERIZE, "tag", "color,-size")
    second = deserialize_sort_params(schema, DASHERIZE, "tag", "color,-size")

    assert first == second == []


def test_descending_prefix_is_not_part_of_the_name(schema):
    (param,) = deserialize_sort_params(schema, DASHERIZE, "tag", "-name")

    assert param.attribute == "name"
    assert param.order is SortOrder.DESCENDING


def test_query_builder_params(schema):
    term = QueryBuilder().find_records("tag")

    term = query_builder_params(schema, DASHERIZE, term, "tag", {"name": "b"}, "-name")
    expression = term.to_query_expression()

    assert expression.type == "tag"
    assert expression.filter == [FilterParam("name", "b")]
    assert expression.sort == [SortParam("name", SortOrder.DESCENDING)]


def test_query_builder_params_related_type(schema):
    term = QueryBuilder().find_related_records(("planet", "1"), "moons")

    expression = query_builder_params(schema, DASHERIZE, term, "moon", {"name": "Moon", "moons": "x"}, "name").to_query_expression()

    assert expression.relationship == "moons"
    assert expression.filter == [FilterParam("name", "Moon")]
    assert expression.sort == [SortParam("name")]


def test_query_builder_params_without_params(schema):
    term = QueryBuilder().find_records("tag")

    expression = query_builder_params(schema, DASHERIZE, term, "tag").to_query_expression()

    assert expression.filter == []
    assert expression.sort == []


def test_parse_query_params():
    query_params = QueryParams("filter[name]=a&filter[name]=b&filter[some-text]=x&sort=-name&include=moons&page[size]=2")

    assert parse_query_params(query_params) == {"filter": {"name": "b", "some-text": "x"}, "sort": "-name"}


def test_parse_query_params_empty_sort():
    assert parse_query_params(QueryParams("sort=")) == {"filter": {}, "sort": None}
    assert parse_query_params({}) == {"filter": {}, "sort": None}
