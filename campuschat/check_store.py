"""Connectivity check for the MongoDB store used by the backend.
Run this after starting MongoDB to verify Motor can connect with the
configured MONGODB_URI.
"""
import asyncio

from .config import Settings
from .errors import StoreUnavailable
from .store import MotorStore


async def check(settings: Settings) -> int:
    print('Using MONGODB_URI=', settings.mongodb_uri)
    store = MotorStore(settings.mongodb_uri, settings.mongodb_db)
    try:
        await store.ping()
        # list databases as a quick probe
        dbs = await store.client.list_database_names()
        print('Connected to MongoDB, databases:', dbs)
        return 0
    except StoreUnavailable as e:
        print('Connection failed:', e.message)
        return 1
    finally:
        store.close()


def main() -> int:
    return asyncio.run(check(Settings.from_env()))


if __name__ == '__main__':
    raise SystemExit(main())
