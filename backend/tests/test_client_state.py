from chatrooms.client.session import LiveSession, _ws_url
from chatrooms.client.state import ConversationView, DeliveryStatus, TypingTracker, UnreadTracker


def _wire_message(message_id, text, sender_id, conversation_id=5, client_token=None):
    return {
        "id": message_id,
        "text": text,
        "type": "TEXT",
        "senderId": sender_id,
        "sender": {"id": sender_id, "username": f"user{sender_id}", "profilePicture": None},
        "conversationId": conversation_id,
        "createdAt": "2024-01-01T00:00:00",
        "clientToken": client_token,
    }


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_confirmed_message_replaces_local_echo_by_token():
    view = ConversationView(5, user_id=1)
    local = view.add_optimistic("hello")
    assert view.pending == [local]

    assert view.apply_confirmed(_wire_message(10, "hello", 1, client_token=local.client_token))
    assert len(view.messages) == 1
    assert view.messages[0].id == 10
    assert view.messages[0].status == DeliveryStatus.CONFIRMED
    assert view.pending == []


def test_same_text_from_someone_else_is_not_merged():
    view = ConversationView(5, user_id=1)
    view.add_optimistic("ok")

    view.apply_confirmed(_wire_message(11, "ok", 2))
    assert [m.sender_id for m in view.messages] == [1, 2]
    assert len(view.pending) == 1


def test_duplicate_delivery_is_ignored():
    view = ConversationView(5, user_id=1)
    payload = _wire_message(12, "hi", 2)
    assert view.apply_confirmed(payload) is True
    assert view.apply_confirmed(payload) is False
    assert view.apply_confirmed(_wire_message(13, "elsewhere", 2, conversation_id=6)) is False
    assert len(view.messages) == 1


def test_failed_send_and_history_reload_keep_unsent_echo():
    view = ConversationView(5, user_id=1)
    sent = view.add_optimistic("made it")
    lost = view.add_optimistic("lost")
    view.mark_failed(lost.client_token)
    assert lost.status == DeliveryStatus.FAILED

    view.load_history([_wire_message(20, "made it", 1, client_token=sent.client_token)])
    assert [(m.text, m.status) for m in view.messages] == [
        ("made it", DeliveryStatus.CONFIRMED),
        ("lost", DeliveryStatus.FAILED),
    ]


def test_typing_expires_and_clears_on_message():
    clock = FakeClock()
    tracker = TypingTracker(timeout=2.0, clock=clock)

    tracker.saw_typing(5, 2, "bob")
    tracker.saw_typing(5, 3, "carol")
    tracker.saw_typing(6, 4, "dave")
    assert tracker.active(5) == ["bob", "carol"]

    clock.now += 1.5
    tracker.saw_typing(5, 2, "bob")
    clock.now += 1.0
    assert tracker.active(5) == ["bob"]

    tracker.stopped(5, 2)
    assert tracker.active(5) == []
    assert tracker.active(6) == []


def test_unread_tracker():
    unread = UnreadTracker()
    unread.initialize([{"id": 1, "unreadCount": 0}, {"id": 5, "unreadCount": 3}])
    unread.increment(5)
    unread.increment(7)
    assert unread.total == 5
    unread.mark_read(5)
    assert unread.counts == {7: 1}


def test_ws_url():
    assert _ws_url("http://localhost:8000/", "abc") == "ws://localhost:8000/ws?token=abc"
    assert _ws_url("https://chat.example.com", "abc") == "wss://chat.example.com/ws?token=abc"


def test_session_applies_live_events():
    session = LiveSession("http://testserver", "token", user_id=1, username="alice")
    session.active_conversation_id = 5
    local = session.view(5).add_optimistic("mine")

    session.handle_frame({"type": "presence_init", "users": [1, 2]})
    session.handle_frame({"type": "presence", "userId": 3, "online": True})
    session.handle_frame({"type": "presence", "userId": 2, "online": False})
    assert session.presence.online == {1, 3}
    assert session.presence.is_online(3)

    session.handle_frame({"type": "typing", "userId": 2, "username": "bob", "conversationId": 5})
    assert session.typing.active(5) == ["bob"]

    session.handle_frame({"type": "chat", "message": _wire_message(30, "from bob", 2)})
    assert session.typing.active(5) == []

    session.handle_frame({"type": "chat", "message": _wire_message(31, "mine", 1, client_token=local.client_token)})
    assert sorted(m.id for m in session.view(5).messages) == [30, 31]
    assert session.view(5).pending == []

    # messages for a conversation in the background raise its badge once
    background = {"type": "chat", "message": _wire_message(32, "ping", 2, conversation_id=6)}
    session.handle_frame(background)
    session.handle_frame(background)
    assert session.unread.counts == {6: 1}

    session.handle_frame({"type": "nonsense"})


def test_session_error_marks_echo_failed():
    session = LiveSession("http://testserver", "token", user_id=1, username="alice")
    local = session.view(5).add_optimistic("denied")

    session.handle_frame({"type": "error", "message": "Access denied", "clientToken": local.client_token})
    assert local.status == DeliveryStatus.FAILED
    assert session.last_error == "Access denied"
