#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
JSON:API server that forwards every request to another JSON:API server,
f.i. the one started by demo_planets.py

Run:
  python examples/demo_planets.py 127.0.0.1 8000
  python examples/demo_proxy.py http://127.0.0.1:8000/api 127.0.0.1 8001

Then open:
  http://127.0.0.1:8001/planets
"""

import sys
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from jarest import JSONAPISource, RecordSchema, ServerSettings, create_app

SCHEMA_FILE = Path(__file__).with_name("planets.yaml")


def create_proxy_app(remote_url: str) -> FastAPI:
    with open(SCHEMA_FILE) as fp:
        schema = RecordSchema.from_yaml(fp)

    source = JSONAPISource(schema, host=remote_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await source.aclose()

    return create_app(ServerSettings(source=source), title="jarest proxy demo", lifespan=lifespan)


if __name__ == "__main__":
    REMOTE_URL = sys.argv[1] if len(sys.argv) > 1 else "http://127.0.0.1:8000/api"
    HOST = sys.argv[2] if len(sys.argv) > 2 else "127.0.0.1"
    PORT = int(sys.argv[3]) if len(sys.argv) > 3 else 8001
    uvicorn.run(create_proxy_app(REMOTE_URL), host=HOST, port=PORT)
