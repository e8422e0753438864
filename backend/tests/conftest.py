"""Shared fixtures: an in-memory stand-in for the store and route clients."""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from types import ModuleType
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.auth.dependencies import CurrentUser, get_current_user  # noqa: E402
from app.common.enums import SubscriptionTier  # noqa: E402
from app.common.validation import ValidationError  # noqa: E402
from app.db.convex_client import StoreError  # noqa: E402
from main import store_error_handler, validation_error_handler  # noqa: E402


def at(hour: int, minute: int = 0, second: int = 0, *, day: int = 1, month: int = 1) -> datetime:
    return datetime(2024, month, day, hour, minute, second, tzinfo=timezone.utc)


def ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


class FakeConvex:
    """Dispatches store function paths to handlers over in-memory tables."""

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self.fail_on: set[str] = set()
        self.connected = False
        self.sessions = 0
        self._seq = 0
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "users:get": lambda a: self._get("users", a["id"]),
            "facilities:get": lambda a: self._get("facilities", a["id"]),
            "facilities:list": lambda a: self.rows("facilities"),
            "facilityReviews:getByFacility": lambda a: self.rows("facilityReviews", facilityId=a["facilityId"]),
            "facilityReviews:getByUser": lambda a: self.rows("facilityReviews", userId=a["userId"]),
            "facilityReviews:getByEvent": self._review_for_event,
            "facilityReviews:create": lambda a: self.insert("facilityReviews", a),
            "facilityReviews:reportPayment": lambda a: self._update(
                "facilityReviews", a["id"], {k: v for k, v in a.items() if k != "id"}
            ),
            "users:update": lambda a: self._update("users", a["id"], {k: v for k, v in a.items() if k != "id"}),
            "users:updateStripeCustomerId": lambda a: self._update(
                "users", a["id"], {"stripeCustomerId": a["stripeCustomerId"]}
            ),
            "subscriptions:create": self._create_subscription,
            "subscriptions:update": self._update_subscription,
            "subscriptions:cancel": self._cancel_subscription,
            "detentionEvents:get": lambda a: self._get("detentionEvents", a["id"]),
            "detentionEvents:getActive": self._active_event,
            "detentionEvents:list": self._list_events,
            "detentionEvents:getByFacility": lambda a: self.rows("detentionEvents", facilityId=a["facilityId"]),
            "detentionEvents:start": lambda a: self.insert("detentionEvents", {**a, "status": "active"}),
            "detentionEvents:complete": lambda a: self._update(
                "detentionEvents", a["id"], {**{k: v for k, v in a.items() if k != "id"}, "status": "completed"}
            ),
            "detentionEvents:remove": lambda a: self.tables["detentionEvents"].pop(a["id"]) and None,
            "gpsLogs:add": lambda a: self.insert("gpsLogs", a),
            "gpsLogs:getByEvent": lambda a: self.rows("gpsLogs", detentionEventId=a["detentionEventId"]),
            "photos:add": lambda a: self.insert("photos", a),
            "photos:getByEvent": lambda a: self.rows("photos", detentionEventId=a["detentionEventId"]),
            "invoices:get": lambda a: self._get("invoices", a["id"]),
            "invoices:list": lambda a: self.rows("invoices", userId=a["userId"]),
            "invoices:listByStatus": lambda a: self.rows("invoices", status=a["status"]),
            "invoices:create": lambda a: self.insert("invoices", {**a, "status": "draft"}),
            "invoices:markSent": self._mark_sent,
            "invoices:markPaid": self._mark_paid,
            "invoices:recordReminder": self._record_reminder,
            "invoices:remove": lambda a: self.tables["invoices"].pop(a["id"]) and None,
            "invoiceEmails:log": lambda a: self.insert("invoiceEmails", a),
        }

    # seeding and lookup

    def insert(self, table: str, doc: Dict[str, Any]) -> str:
        self._seq += 1
        doc_id = doc.get("_id") or f"{table}-{self._seq}"
        record = {"_creationTime": 1704067200000 + self._seq, **doc, "_id": doc_id}
        self.tables.setdefault(table, {})[doc_id] = record
        return doc_id

    def rows(self, table: str, **where: Any) -> List[Dict[str, Any]]:
        return [
            dict(doc)
            for doc in self.tables.get(table, {}).values()
            if all(doc.get(key) == value for key, value in where.items())
        ]

    def paths(self) -> List[str]:
        return [path for _, path, _ in self.calls]

    # client surface used by the routes

    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    @asynccontextmanager
    async def session(self) -> AsyncIterator["FakeConvex"]:
        self.sessions += 1
        self.connected = True
        try:
            yield self
        finally:
            self.connected = False

    async def query(self, path: str, args: Optional[Dict[str, Any]] = None) -> Any:
        return self._dispatch("query", path, args)

    async def mutation(self, path: str, args: Optional[Dict[str, Any]] = None) -> Any:
        return self._dispatch("mutation", path, args)

    def _dispatch(self, kind: str, path: str, args: Optional[Dict[str, Any]]) -> Any:
        clean = {key: value for key, value in (args or {}).items() if value is not None}
        self.calls.append((kind, path, clean))
        if path in self.fail_on:
            raise StoreError(path, "simulated failure")
        if path not in self._handlers:
            raise StoreError(path, "unknown function")
        return self._handlers[path](clean)

    # handlers

    def _get(self, table: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self.tables.get(table, {}).get(doc_id)
        return dict(doc) if doc else None

    def _update(self, table: str, doc_id: str, changes: Dict[str, Any]) -> None:
        self.tables[table][doc_id].update(changes)

    def _active_event(self, args: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        active = self.rows("detentionEvents", userId=args["userId"], status="active")
        return active[0] if active else None

    def _list_events(self, args: Dict[str, Any]) -> List[Dict[str, Any]]:
        where = {"userId": args["userId"]}
        if "status" in args:
            where["status"] = args["status"]
        events = sorted(self.rows("detentionEvents", **where), key=lambda e: e.get("arrivalTime") or 0, reverse=True)
        return events[: args["limit"]] if "limit" in args else events

    def _set_event_status(self, invoice_id: str, status: str) -> None:
        for event_id in self.tables["invoices"][invoice_id].get("detentionEventIds", []):
            if event_id in self.tables.get("detentionEvents", {}):
                self.tables["detentionEvents"][event_id]["status"] = status

    def _mark_sent(self, args: Dict[str, Any]) -> None:
        changes = {"status": "sent", "sentAt": args["sentAt"]}
        if "recipientEmail" in args:
            changes["recipientEmail"] = args["recipientEmail"]
        self._update("invoices", args["id"], changes)
        self._set_event_status(args["id"], "invoiced")

    def _mark_paid(self, args: Dict[str, Any]) -> None:
        self._update("invoices", args["id"], {"status": "paid", "paidAt": args["paidAt"]})
        self._set_event_status(args["id"], "paid")

    def _record_reminder(self, args: Dict[str, Any]) -> None:
        invoice = self.tables["invoices"][args["id"]]
        invoice["reminderCount"] = int(invoice.get("reminderCount") or 0) + 1
        invoice["lastReminderAt"] = args["remindedAt"]

    def _review_for_event(self, args: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        reviews = self.rows("facilityReviews", detentionEventId=args["detentionEventId"])
        return reviews[0] if reviews else None

    def _subscription(self, stripe_subscription_id: str) -> Dict[str, Any]:
        for doc in self.tables.get("subscriptions", {}).values():
            if doc.get("stripeSubscriptionId") == stripe_subscription_id:
                return doc
        raise StoreError("subscriptions", "Subscription not found")

    def _create_subscription(self, args: Dict[str, Any]) -> str:
        subscription_id = self.insert("subscriptions", {**args, "cancelAtPeriodEnd": False})
        self.tables.setdefault("users", {}).setdefault(args["userId"], {"_id": args["userId"]}).update(
            {"subscriptionTier": args["tier"], "subscriptionStatus": args["status"]}
        )
        return subscription_id

    def _update_subscription(self, args: Dict[str, Any]) -> None:
        subscription = self._subscription(args["stripeSubscriptionId"])
        updates = {k: v for k, v in args.items() if k != "stripeSubscriptionId"}
        subscription.update(updates)
        user = self.tables["users"][subscription["userId"]]
        if "tier" in updates:
            user["subscriptionTier"] = updates["tier"]
        if "status" in updates:
            user["subscriptionStatus"] = updates["status"]

    def _cancel_subscription(self, args: Dict[str, Any]) -> None:
        subscription = self._subscription(args["stripeSubscriptionId"])
        subscription.update({"status": "canceled", "cancelAtPeriodEnd": True})
        self.tables["users"][subscription["userId"]].update({"subscriptionTier": "free", "subscriptionStatus": "canceled"})


@pytest.fixture()
def fake_db() -> FakeConvex:
    return FakeConvex()


@pytest.fixture()
def driver() -> CurrentUser:
    return CurrentUser(id="user-1", email="driver@example.com", tier=SubscriptionTier.PRO)


@pytest.fixture()
def make_client(monkeypatch: pytest.MonkeyPatch, fake_db: FakeConvex, driver: CurrentUser):
    """Build a TestClient for one routes module with the fake store patched in."""

    def _make(module: ModuleType, user: Optional[CurrentUser] = None) -> TestClient:
        monkeypatch.setattr(module, "db", fake_db)
        api = FastAPI()
        api.include_router(module.router)
        api.add_exception_handler(StoreError, store_error_handler)
        api.add_exception_handler(ValidationError, validation_error_handler)
        api.dependency_overrides[get_current_user] = lambda: user or driver
        return TestClient(api)

    return _make
