import asyncio
import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

from campuschat.app import create_app
from campuschat.config import Settings
from campuschat.store import MemoryStore


class FakeChannel:
    """Records every payload pushed to it."""

    def __init__(self, name=""):
        self.name = name
        self.received = []

    async def send(self, payload):
        self.received.append(payload)

    def __repr__(self):
        return f"FakeChannel({self.name!r})"


class BrokenChannel(FakeChannel):
    async def send(self, payload):
        raise ConnectionError("socket closed")


class StuckChannel(FakeChannel):
    async def send(self, payload):
        await asyncio.sleep(10)


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


class AppTestCase(unittest.TestCase):
    """Runs each test against a fresh app on the in-memory store."""

    identity_field = "phone"

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.settings = Settings(
            store_backend="memory",
            jwt_secret="test-secret",
            identity_field=self.identity_field,
            uploads_dir=str(Path(tmp.name) / "uploads"),
        )
        self.app = create_app(self.settings, MemoryStore())
        self.client = TestClient(self.app)
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

    def make_user(self, identity, password="correct horse", display_name=None):
        """Register and log in a user; returns the bearer token."""
        field = self.settings.identity_field
        data = {field: identity, "password": password}
        if display_name:
            data["displayName"] = display_name
        r = self.client.post("/auth/register", data=data)
        self.assertEqual(r.status_code, 201, r.text)
        r = self.client.post("/auth/login", json={field: identity, "password": password})
        self.assertEqual(r.status_code, 200, r.text)
        return r.json()["token"]
