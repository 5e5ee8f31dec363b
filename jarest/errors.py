# Exception Handlers
#
# Record sources, document deserialization and request parsing raise the
# exceptions below. The router passes every exception to serialize_error,
# which picks the http status and builds the JSON:API error document, f.i.:
# {
#     "errors": [
#         {
#             "id": "8f7c0d5e-...",
#             "title": "Record not found",
#             "detail": "planet:123",
#             "code": 404,
#             "status": "404"
#         }
#     ]
# }
#
# The application loglevel determines the level of detail logged for
# unclassified errors. Tracebacks never end up in the response body.
#
import traceback
from http import HTTPStatus
from typing import Any, Dict, Optional, Tuple

import jarest
from .config import is_debug


class JarestError(Exception):
    """
    Base class of the jarest exceptions

    :param message: short summary, used as the error title
    :param description: details, used as the error detail
    """

    message = "Error"

    def __init__(self, message: Optional[str] = None, description: str = "") -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)
        self.description = description


class SchemaError(JarestError):
    """
    The schema does not define the requested model, attribute or relationship
    """

    message = "Schema Error"


class RecordException(JarestError):
    """
    A record is invalid, f.i. an attribute value doesn't match its declared type
    """

    message = "Record Error"


class RecordNotFoundException(RecordException):
    """
    This exception is raised when a record was not found
    """

    message = "Record not found"

    def __init__(self, type: str, id: Any = None, description: Optional[str] = None) -> None:
        self.type = type
        self.id = id
        if description is None:
            description = f"{type}:{id}" if id is not None else type
        super().__init__(description=description)


class ValidationError(RecordException):
    """
    This exception is raised when an invalid request document has been received (client side input)
    Always send back the message to the client in the response
    """

    message = "Validation Error"

    def __init__(self, description: str = "") -> None:
        super().__init__(description=description)
        jarest.log.warning("ValidationError: %s", description)


class NetworkError(JarestError):
    """
    A remote JSON:API server couldn't be reached or answered with an error
    """

    message = "Network Error"


class ClientError(NetworkError):
    """
    The remote server rejected the request (4xx)

    :param description: detail reported by the remote server
    :param response: the remote (httpx) response
    """

    message = "Client Error"

    def __init__(self, description: str, response: Any) -> None:
        super().__init__(description=description)
        self.response = response


class ServerError(NetworkError):
    """
    The remote server failed to handle the request (5xx)
    """

    message = "Server Error"

    def __init__(self, description: str, response: Any) -> None:
        super().__init__(description=description)
        self.response = response


def classify_error(error: BaseException) -> Tuple[int, str]:
    """
    Map an exception to the http status code and the error detail

    :param error: exception raised while handling a request
    :return: (status code, detail)
    """
    if isinstance(error, RecordNotFoundException):
        return HTTPStatus.NOT_FOUND.value, error.description
    if isinstance(error, (ClientError, ServerError)):
        status_code = getattr(error.response, "status_code", HTTPStatus.BAD_GATEWAY.value)
        return int(status_code), error.description
    if isinstance(error, (SchemaError, RecordException)):
        return HTTPStatus.BAD_REQUEST.value, error.description
    return HTTPStatus.INTERNAL_SERVER_ERROR.value, ""


async def serialize_error(source: Any, error: BaseException) -> Tuple[int, Dict[str, Any]]:
    """
    Drain the request queue of `source` and create the JSON:API error document for `error`

    :param source: record source that handled the failed request
    :param error: exception raised while handling the request
    :return: (status code, error document)
    """
    try:
        await source.request_queue.clear()
    except Exception as exc:
        jarest.log.warning("Failed to clear the request queue of %s: %s", getattr(source, "name", source), exc)

    status_code, detail = classify_error(error)
    title = str(error) or error.__class__.__name__

    if status_code >= HTTPStatus.INTERNAL_SERVER_ERROR.value:
        jarest.log.error("%s: %s", error.__class__.__name__, title)
        if is_debug():
            jarest.log.debug("".join(traceback.format_exception(type(error), error, error.__traceback__)))
    else:
        jarest.log.warning("%s (%s): %s", title, status_code, detail)

    body = {
        "errors": [
            {
                "id": source.schema.generate_id(),
                "title": title,
                "detail": detail,
                "code": status_code,
                "status": str(status_code),
            }
        ]
    }
    return status_code, body
