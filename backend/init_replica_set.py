"""
MongoDB Replica Set Initialisation

Turns a standalone mongod started with --replSet into a single-member replica
set. Safe to run repeatedly: an initialised set is left alone.

Run: python init_replica_set.py
"""

import time
from pathlib import Path
from typing import Callable

from dotenv import load_dotenv
from pymongo import MongoClient
from pymongo.errors import OperationFailure, PyMongoError

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

from config import get_settings

SERVER_SELECTION_TIMEOUT_MS = 5000


def replica_set_status(client: MongoClient) -> dict:
    """replSetGetStatus, or {} while the set is not initialised."""
    try:
        return client.admin.command("replSetGetStatus")
    except OperationFailure:
        return {}


def init_replica_set(
    client: MongoClient,
    replica_set: str,
    host: str,
    wait_seconds: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Initiate `replica_set` with `host` as its only member.

    Returns True when the set is (or already was) initialised.
    """
    if replica_set_status(client).get("ok") == 1:
        print("Replica set already initialized")
        return True

    config = {"_id": replica_set, "members": [{"_id": 0, "host": host}]}
    result = client.admin.command("replSetInitiate", config)
    print(f"Replica set initiation requested: {result}")

    # Election of the primary takes a few seconds
    sleep(wait_seconds)

    status = replica_set_status(client)
    if status.get("ok") == 1:
        print(f"Replica set '{replica_set}' initialized successfully")
        return True

    print(f"Replica set '{replica_set}' is not ready yet: {status}")
    return False


def main():
    settings = get_settings()
    try:
        with MongoClient(
            settings.MONGO_URL,
            directConnection=True,
            serverSelectionTimeoutMS=SERVER_SELECTION_TIMEOUT_MS,
        ) as client:
            ok = init_replica_set(
                client,
                settings.MONGO_REPLICA_SET,
                settings.MONGO_REPLICA_HOST,
                wait_seconds=settings.REPLICA_INIT_WAIT_SECONDS,
            )
    except PyMongoError as e:
        print(f"Error initializing replica set: {e}")
        raise SystemExit(1)

    if not ok:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
