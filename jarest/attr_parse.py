import datetime
from typing import Any, Optional

import jarest
from .errors import RecordException

TRUE_STRINGS = ("true", "1")
FALSE_STRINGS = ("false", "0")


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """
    Stored datetimes are offset-aware UTC values, naive values are taken to be UTC
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def _parse_datetime(value: str) -> datetime.datetime:
    date_str = value.strip()
    if date_str.endswith("Z"):
        date_str = date_str[:-1] + "+00:00"
    return as_utc(datetime.datetime.fromisoformat(date_str))


def parse_attr(attr_type: str, attr_val: Any, name: str = "") -> Any:
    """
    Parse the supplied `attr_val` so it can be stored as an attribute of type `attr_type`

    :param attr_type: schema attribute type (string, number, boolean, date, datetime)
    :param attr_val: jsonapi attribute value
    :param name: attribute name, used in the error description
    :return: processed value
    """
    if attr_val is None:
        return attr_val

    invalid = RecordException(description=f"Invalid value {attr_val!r} for attribute {name}: expected {attr_type}")

    if attr_type == "string":
        if not isinstance(attr_val, str):
            raise invalid
        return attr_val

    if attr_type == "number":
        # bool is an int subclass
        if isinstance(attr_val, bool) or not isinstance(attr_val, (int, float)):
            raise invalid
        return attr_val

    if attr_type == "boolean":
        if not isinstance(attr_val, bool):
            raise invalid
        return attr_val

    """
        Parse datetime and date values from their ISO 8601 representations
        date values also accept a datetime string, the time part is dropped
    """
    if attr_type == "datetime":
        if isinstance(attr_val, datetime.datetime):
            return as_utc(attr_val)
        try:
            return _parse_datetime(str(attr_val))
        except ValueError as exc:
            jarest.log.debug(f'Invalid datetime.datetime {exc} for value "{attr_val}"')
            raise invalid

    if attr_type == "date":
        if isinstance(attr_val, datetime.datetime):
            return attr_val.date()
        if isinstance(attr_val, datetime.date):
            return attr_val
        try:
            return datetime.date.fromisoformat(str(attr_val)[:10])
        except ValueError as exc:
            jarest.log.debug(f'Invalid datetime.date {exc} for value "{attr_val}"')
            raise invalid

    return attr_val


def parse_filter_value(attr_type: Optional[str], raw: Any) -> Any:
    """
    Convert a raw query-string filter value to the attribute type so it can be
    compared with stored values. Values that can't be converted are returned
    unchanged: they simply won't match anything.
    """
    if not isinstance(raw, str):
        return raw
    try:
        if attr_type == "number":
            number = float(raw)
            return int(number) if number.is_integer() else number
        if attr_type == "boolean":
            if raw.lower() in TRUE_STRINGS:
                return True
            if raw.lower() in FALSE_STRINGS:
                return False
            return raw
        if attr_type == "datetime":
            return _parse_datetime(raw)
        if attr_type == "date":
            return datetime.date.fromisoformat(raw)
    except ValueError:
        return raw
    return raw
