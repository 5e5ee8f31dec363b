#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
JSON:API server for the planets schema

Run:
  pip install -e . uvicorn
  python examples/demo_planets.py [HOST] [PORT] [DB_URL]

Without DB_URL the records are kept in memory, f.i. with a sqlite file:
  python examples/demo_planets.py 127.0.0.1 8000 sqlite:///./planets.db

Then open:
  http://HOST:PORT/api/planets
  http://HOST:PORT/docs
"""

import asyncio
import logging
import sys
from pathlib import Path

import uvicorn
from fastapi import FastAPI

import jarest
from jarest import MemorySource, RecordSchema, ServerSettings, SQLSource, create_app

API_PREFIX = "/api"
SCHEMA_FILE = Path(__file__).with_name("planets.yaml")


def seed(source: jarest.RecordSource) -> None:
    async def _seed() -> None:
        if await source.query(lambda q: q.find_records("planet")):
            return
        earth = await source.update(lambda t: t.add_record({"type": "planet", "attributes": {"name": "Earth"}}))
        await source.update(
            lambda t: t.add_record(
                {
                    "type": "moon",
                    "attributes": {"name": "Moon"},
                    "relationships": {"planet": {"data": {"type": "planet", "id": earth["id"]}}},
                }
            )
        )

    asyncio.run(_seed())


def create_demo_app(db_url: str = "") -> FastAPI:
    with open(SCHEMA_FILE) as fp:
        schema = RecordSchema.from_yaml(fp)

    source = SQLSource(schema, db_url) if db_url else MemorySource(schema)
    seed(source)

    app = create_app(ServerSettings(source=source, prefix=API_PREFIX), title="jarest planets demo")

    @app.get("/", include_in_schema=False)
    def root():
        return {"status": "ok", "docs": "/docs", "api": API_PREFIX}

    return app


if __name__ == "__main__":
    HOST = sys.argv[1] if len(sys.argv) > 1 else "127.0.0.1"
    PORT = int(sys.argv[2]) if len(sys.argv) > 2 else 8000
    DB_URL = sys.argv[3] if len(sys.argv) > 3 else ""
    jarest.JAREST.configure(LOGLEVEL=logging.INFO)
    uvicorn.run(create_demo_app(DB_URL), host=HOST, port=PORT)
