import pytest
from starlette.websockets import WebSocketDisconnect

from embrohub.auth.security import create_access_token

from conftest import VECTOR_ORDER, auth


def _place_order(client, customer):
    return client.post("/orders", json=VECTOR_ORDER, headers=auth(customer)).json()["order"]


def test_inbox_lists_newest_first_with_unread_count(client, customer):
    first = _place_order(client, customer)
    second = _place_order(client, customer)

    body = client.get("/notifications", headers=auth(customer)).json()
    assert body["unreadCount"] == 2
    assert [n["orderId"] for n in body["notifications"]] == [second["id"], first["id"]]
    assert body["notifications"][0]["type"] == "order_created"
    assert body["notifications"][0]["senderRole"] == "system"


def test_mark_read_and_read_all(client, customer, admin):
    _place_order(client, customer)
    _place_order(client, customer)
    notes = client.get("/notifications", headers=auth(customer)).json()["notifications"]

    r = client.put(f"/notifications/{notes[0]['id']}/read", headers=auth(customer))
    assert r.status_code == 200
    assert r.json()["notification"]["isRead"] is True
    assert client.get("/notifications/unread-count", headers=auth(customer)).json()["unreadCount"] == 1

    r = client.put("/notifications/read-all", headers=auth(customer))
    assert r.json()["updated"] == 1
    assert client.get("/notifications?unread_only=true", headers=auth(customer)).json()["notifications"] == []

    assert client.get("/notifications/unread-count", headers=auth(admin)).json()["unreadCount"] == 2


def test_cannot_mark_someone_elses_notification(client, customer, admin):
    _place_order(client, customer)
    theirs = client.get("/notifications", headers=auth(admin)).json()["notifications"][0]
    r = client.put(f"/notifications/{theirs['id']}/read", headers=auth(customer))
    assert r.status_code == 403


def test_unknown_notification_is_404(client, customer):
    assert client.put("/notifications/not-a-uuid/read", headers=auth(customer)).status_code == 404


def test_new_notifications_are_pushed(client, customer, admin, push):
    _place_order(client, customer)
    assert "newNotification" in push.events_for(customer.id)
    assert "newNotification" in push.events_for(admin.id)


def test_websocket_sends_unread_count_and_answers_ping(client, customer):
    _place_order(client, customer)
    token = create_access_token(str(customer.id), customer.role)
    with client.websocket_connect(f"/ws/notifications?token={token}") as ws:
        assert ws.receive_json() == {"event": "unreadCount", "data": {"unreadCount": 1}}
        ws.send_text("ping")
        assert ws.receive_text() == "pong"


def test_websocket_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/notifications?token=garbage") as ws:
            ws.receive_json()
    assert exc.value.code == 4401
