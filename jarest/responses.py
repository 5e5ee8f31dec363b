# -*- coding: utf-8 -*-

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

import jarest


class JSONAPIResponse(JSONResponse):
    """
    JSON:API requires 'application/vnd.api+json'
    date and datetime attribute values are rendered in ISO 8601 format
    """

    media_type = jarest.JAREST.JSONAPI_MEDIA_TYPE

    def render(self, content: Any) -> bytes:
        return super().render(jsonable_encoder(content))
