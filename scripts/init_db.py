#!/usr/bin/env python3
"""
One-shot helper: create tables without starting the server.
"""
import asyncio

from ritual_engine.config import settings
from ritual_engine.db import Database


async def main():
    database = Database(settings.db_url, echo=settings.db_echo)
    try:
        await database.create_all()
    finally:
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(main())
    print(f"DB tables created at {settings.db_url}.")
