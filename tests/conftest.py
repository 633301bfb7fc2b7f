import asyncio
import itertools
import json
import os
import sys
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from invsync.auth import AuthManager
from invsync.ledger import StockLedger
from invsync.remote import RemoteInventoryClient
from invsync.store import LocalStore

BASE_URL = "http://testserver/api"
OWNER_EMAIL = "owner@example.com"
OWNER_PASSWORD = "secret"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class FakeInventoryServer:
    """In-memory stand-in for the inventory REST API."""

    prefix = "/api"

    def __init__(self) -> None:
        self.users: dict[str, dict] = {}
        self.passwords: dict[str, str] = {}
        self.tokens: dict[str, dict] = {}
        self.sessions: dict[str, dict] = {}
        self.items: dict[str, dict] = {}
        self.locations: dict[str, dict] = {}
        self.transactions: dict[str, dict] = {}
        self.categories: set[str] = set()
        self.requests: list[tuple[str, str]] = []
        self.latency = 0.0
        self._delays: list[tuple[str, str, float]] = []
        self._failures: list[dict] = []
        self._ids = itertools.count(1)

    # -- seeding -------------------------------------------------------------

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def add_user(self, email: str, password: str, name: str = "Owner") -> dict:
        user = {"id": self._next_id("user"), "email": email, "name": name, "createdAt": _now()}
        self.users[email] = user
        self.passwords[email] = password
        return user

    def seed_location(self, name: str, description: str | None = None) -> dict:
        location = {
            "id": self._next_id("loc"),
            "name": name,
            "description": description,
            "userId": None,
            "createdAt": _now(),
        }
        self.locations[location["id"]] = location
        return location

    def seed_item(self, sku: str, quantity: int, **fields) -> dict:
        item = {
            "id": self._next_id("item"),
            "userId": None,
            "sku": sku,
            "name": fields.get("name", f"Item {sku}"),
            "category": fields.get("category", "Tools"),
            "locationId": fields.get("location_id", "loc-main"),
            "quantity": quantity,
            "minStock": fields.get("min_stock", 10),
            "description": fields.get("description", ""),
            "imageUrl": fields.get("image_url", ""),
            "createdAt": _now(),
            "updatedAt": _now(),
        }
        self.items[item["id"]] = item
        return item

    def seed_transaction(self, item_id: str, type_: str, change: int, timestamp: str | None = None) -> dict:
        transaction = {
            "id": self._next_id("txn"),
            "userId": None,
            "itemId": item_id,
            "type": type_,
            "quantityChange": change,
            "notes": None,
            "timestamp": timestamp or _now(),
        }
        self.transactions[transaction["id"]] = transaction
        return transaction

    # -- failure injection ---------------------------------------------------

    def fail(self, method: str, path: str, status: int = 500, message: str | None = "Server error", *, times: int = 1, skip: int = 0) -> None:
        self._failures.append(
            {"method": method, "path": path, "status": status, "message": message, "times": times, "skip": skip}
        )

    def fail_transport(self, method: str, path: str, *, times: int = 1) -> None:
        self._failures.append(
            {"method": method, "path": path, "status": None, "message": None, "times": times, "skip": 0}
        )

    def slow(self, method: str, path: str, seconds: float) -> None:
        self._delays.append((method, path, seconds))

    def expire_sessions(self) -> None:
        self.tokens.clear()
        self.sessions.clear()

    def _take_failure(self, method: str, path: str) -> dict | None:
        for failure in self._failures:
            if failure["method"] != method or not path.startswith(failure["path"]):
                continue
            if failure["skip"]:
                failure["skip"] -= 1
                return None
            failure["times"] -= 1
            if failure["times"] <= 0:
                self._failures.remove(failure)
            return failure
        return None

    @property
    def writes(self) -> list[tuple[str, str]]:
        """Inventory mutations received; auth traffic is not counted."""

        return [
            entry for entry in self.requests if entry[0] != "GET" and not entry[1].startswith("/auth")
        ]

    # -- transport -----------------------------------------------------------

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(self.latency)
        method = request.method
        path = request.url.path
        if path.startswith(self.prefix):
            path = path[len(self.prefix):]
        for delayed_method, delayed_path, seconds in self._delays:
            if method == delayed_method and path.startswith(delayed_path):
                await asyncio.sleep(seconds)
        self.requests.append((method, path))

        failure = self._take_failure(method, path)
        if failure is not None:
            if failure["status"] is None:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(failure["status"], json={"message": failure["message"]})

        body = json.loads(request.content) if request.content else None
        parts = [part for part in path.split("/") if part]

        if parts == ["test"]:
            return httpx.Response(200, json={"message": "ok"})
        if parts[0] == "auth":
            return self._auth(request, method, parts[1], body)

        user = self._user_for(request)
        if user is None:
            return httpx.Response(401, json={"message": "Unauthorized"})

        handler = getattr(self, f"_{parts[0]}", None)
        if handler is None:
            return httpx.Response(404, text="Not Found")
        return handler(request, method, parts[1:], body, user)

    def _user_for(self, request: httpx.Request) -> dict | None:
        authorization = request.headers.get("Authorization", "")
        if authorization.startswith("Bearer "):
            return self.tokens.get(authorization[len("Bearer "):])
        for part in request.headers.get("Cookie", "").split(";"):
            name, _, value = part.strip().partition("=")
            if name == "session":
                return self.sessions.get(value)
        return None

    def _open_session(self, user: dict) -> httpx.Response:
        token = self._next_id("token")
        session_id = self._next_id("sid")
        self.tokens[token] = user
        self.sessions[session_id] = user
        return httpx.Response(
            200,
            json={"user": user, "token": token},
            headers={"Set-Cookie": f"session={session_id}; Path=/"},
        )

    def _auth(self, request, method, action, body):
        if action == "login" and method == "POST":
            email = body.get("email")
            if self.passwords.get(email) != body.get("password"):
                return httpx.Response(401, json={"message": "Invalid credentials"})
            return self._open_session(self.users[email])
        if action == "register" and method == "POST":
            if body["email"] in self.users:
                return httpx.Response(409, json={"message": "Email already registered"})
            user = self.add_user(body["email"], body["password"], body["name"])
            return self._open_session(user)
        if action == "logout":
            authorization = request.headers.get("Authorization", "")
            if authorization.startswith("Bearer "):
                self.tokens.pop(authorization[len("Bearer "):], None)
            return httpx.Response(204)
        user = self._user_for(request)
        if action == "check":
            return httpx.Response(200, json={"authenticated": user is not None})
        if action == "profile":
            if user is None:
                return httpx.Response(401, json={"message": "Unauthorized"})
            return httpx.Response(200, json={"user": user})
        return httpx.Response(404, json={"message": "Unknown auth route"})

    def _items(self, request, method, rest, body, user):
        if not rest:
            if method == "GET":
                return httpx.Response(200, json=list(self.items.values()))
            missing = [key for key in ("name", "sku", "category", "locationId") if not body.get(key)]
            if missing:
                return httpx.Response(400, json={"message": f"Missing fields: {', '.join(missing)}"})
            if any(item["sku"] == body["sku"] for item in self.items.values()):
                return httpx.Response(409, json={"message": "SKU already exists"})
            item = self.seed_item(
                body["sku"],
                body.get("quantity", 0),
                name=body["name"],
                category=body["category"],
                location_id=body["locationId"],
                min_stock=body.get("minStock", 0),
                description=body.get("description", ""),
                image_url=body.get("imageUrl", ""),
            )
            item["userId"] = user["id"]
            return httpx.Response(201, json=item)

        item = self.items.get(rest[0])
        if item is None:
            return httpx.Response(404, json={"message": "Item not found"})
        if method == "PUT":
            item.update(body)
            item["updatedAt"] = _now()
            return httpx.Response(200, json=item)
        if method == "DELETE":
            del self.items[item["id"]]
            if request.url.params.get("cascade") == "transactions":
                self.transactions = {
                    key: value for key, value in self.transactions.items() if value["itemId"] != item["id"]
                }
            return httpx.Response(204)
        return httpx.Response(200, json=item)

    def _locations(self, request, method, rest, body, user):
        if not rest:
            if method == "GET":
                return httpx.Response(200, json=list(self.locations.values()))
            location = self.seed_location(body["name"], body.get("description"))
            return httpx.Response(201, json=location)
        location = self.locations.get(rest[0])
        if location is None:
            return httpx.Response(404, json={"message": "Location not found"})
        if method == "PUT":
            location.update(body)
            return httpx.Response(200, json=location)
        if method == "DELETE":
            del self.locations[location["id"]]
            return httpx.Response(204)
        return httpx.Response(200, json=location)

    def _transactions(self, request, method, rest, body, user):
        if method == "GET":
            return httpx.Response(200, json=list(self.transactions.values()))
        if body.get("itemId") not in self.items:
            return httpx.Response(404, json={"message": "Item not found"})
        transaction = self.seed_transaction(
            body["itemId"], body["type"], body["quantityChange"], body.get("timestamp")
        )
        transaction["notes"] = body.get("notes")
        transaction["userId"] = user["id"]
        return httpx.Response(201, json=transaction)

    def _category_names(self) -> set[str]:
        return {item["category"] for item in self.items.values()} | self.categories

    def _categories(self, request, method, rest, body, user):
        if method == "GET":
            return httpx.Response(200, json=sorted(self._category_names()))
        if rest == ["rename"]:
            if body["oldName"] not in self._category_names():
                return httpx.Response(404, json={"message": "Category not found"})
            for item in self.items.values():
                if item["category"] == body["oldName"]:
                    item["category"] = body["newName"]
            if body["oldName"] in self.categories:
                self.categories.discard(body["oldName"])
                self.categories.add(body["newName"])
            return httpx.Response(200, json={"message": "Category renamed"})
        name = rest[0]
        if name not in self._category_names():
            return httpx.Response(404, json={"message": "Category not found"})
        if any(item["category"] == name for item in self.items.values()):
            return httpx.Response(409, json={"message": "Category in use"})
        self.categories.discard(name)
        return httpx.Response(204)


@pytest.fixture
def server():
    fake = FakeInventoryServer()
    fake.add_user(OWNER_EMAIL, OWNER_PASSWORD)
    fake.locations["loc-main"] = {
        "id": "loc-main",
        "name": "Main Warehouse",
        "description": None,
        "userId": None,
        "createdAt": _now(),
    }
    return fake


@pytest.fixture
def store(tmp_path):
    return LocalStore(f"sqlite:///{tmp_path / 'cache.db'}")


@pytest_asyncio.fixture
async def remote(server):
    client = RemoteInventoryClient(BASE_URL, auth_mode="bearer", transport=server.transport())
    try:
        yield client
    finally:
        await client.aclose()


@pytest_asyncio.fixture
async def session(remote):
    return await AuthManager(remote).login(OWNER_EMAIL, OWNER_PASSWORD)


@pytest.fixture
def make_ledger(session, remote, store):
    async def _make(**policies) -> StockLedger:
        ledger = StockLedger(session, remote, store, **policies)
        await ledger.load_all()
        return ledger

    return _make


@pytest_asyncio.fixture
async def ledger(make_ledger):
    return await make_ledger()
