import asyncio
import json

import pytest

from conftest import order_body
from database import transaction
from models import Notification
from notifications import create_notification
from sse import SseManager, format_event, sse_manager


def test_format_event():
    assert format_event({"a": 1}) == 'data: {"a": 1}\n\n'


def test_manager_delivers_to_every_open_stream():
    manager = SseManager()

    async def scenario():
        first, second = asyncio.Queue(), asyncio.Queue()
        manager.add_client(7, first)
        manager.add_client(7, second)
        delivered = manager.send_notification(7, {"content": "hi"})
        await asyncio.sleep(0)
        return delivered, first.get_nowait(), second.get_nowait()

    delivered, a, b = asyncio.run(scenario())

    assert delivered == 2
    assert json.loads(a[len("data: "):]) == {"content": "hi"}
    assert a == b


def test_manager_forgets_closed_streams():
    manager = SseManager()

    async def scenario():
        queue = asyncio.Queue()
        manager.add_client(1, queue)
        manager.remove_client(1, queue)

    asyncio.run(scenario())

    assert manager.connection_count(1) == 0
    assert manager.send_notification(1, {"content": "nobody"}) == 0


def test_push_happens_only_after_commit(db, buyer, monkeypatch):
    sent = []
    monkeypatch.setattr(sse_manager, "send_notification", lambda user_id, data: sent.append((user_id, data)))
    user_id = buyer["user"]["id"]

    with pytest.raises(RuntimeError):
        with transaction(db):
            create_notification(db, user_id, "never", "TEST")
            raise RuntimeError("boom")
    assert sent == []
    assert db.query(Notification).filter_by(message="never").count() == 0

    with transaction(db):
        create_notification(db, user_id, "hello", "TEST")
    assert [(uid, data["content"]) for uid, data in sent] == [(user_id, "hello")]


def test_list_and_read_notifications(client, buyer, other_buyer, product):
    client.post("/api/purchase", json=order_body(product["id"]), headers=buyer["headers"])
    client.post("/api/purchase", json=order_body(product["id"]), headers=buyer["headers"])

    listing = client.get("/notifications", headers=buyer["headers"]).json()
    assert listing["totalCount"] == 2
    newest = listing["list"][0]
    assert newest["isChecked"] is False

    assert client.patch(f"/notifications/{newest['id']}/read", headers=other_buyer["headers"]).status_code == 403
    res = client.patch(f"/notifications/{newest['id']}/read", headers=buyer["headers"])
    assert res.json()["isChecked"] is True

    unread = client.get("/notifications", params={"filter": "unChecked"}, headers=buyer["headers"]).json()
    assert unread["totalCount"] == 1
    assert client.patch("/notifications/999/read", headers=buyer["headers"]).status_code == 404


def test_cancel_sends_notification(client, db, buyer, product):
    order = client.post("/api/purchase", json=order_body(product["id"]), headers=buyer["headers"]).json()
    client.delete(f"/api/purchase/{order['id']}", headers=buyer["headers"])

    types = [n.type for n in db.query(Notification).filter_by(user_id=buyer["user"]["id"])]
    assert sorted(types) == ["ORDER_CANCELED", "ORDER_COMPLETED"]


def test_stream_requires_login(client):
    assert client.get("/notifications/sse").status_code == 401
