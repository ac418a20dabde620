from conftest import create_group, send, signup


def _receipts_by_user(client, user, conversation_id):
    res = client.get(f"/messages/{conversation_id}/receipts", headers=user["headers"])
    assert res.status_code == 200
    return {r["userId"]: r for r in res.json()["receipts"]}


def test_member_reads_message_with_receipts(client):
    alice = signup(client, "alice")
    bob = signup(client, "bob")
    cid = create_group(client, alice, bob)

    res = send(client, alice, cid, "hello")
    assert res.status_code == 200
    sent = res.json()["message"]
    assert sent["type"] == "TEXT"

    res = client.get(f"/messages/{cid}", headers=bob["headers"])
    assert res.status_code == 200
    messages = res.json()["messages"]
    assert len(messages) == 1
    assert messages[0]["text"] == "hello"
    assert messages[0]["sender"]["id"] == alice["id"]
    assert messages[0]["sender"]["username"] == "alice"

    receipts = _receipts_by_user(client, bob, cid)
    assert receipts[bob["id"]]["isRead"] is False
    assert receipts[alice["id"]]["isRead"] is True


def test_mark_read_clears_unread_and_is_idempotent(client):
    alice = signup(client, "alice")
    bob = signup(client, "bob")
    cid = create_group(client, alice, bob)
    send(client, alice, cid, "hello")

    conversations = client.get("/conversations", headers=bob["headers"]).json()["conversations"]
    assert {c["id"]: c["unreadCount"] for c in conversations}[cid] == 1

    res = client.post(f"/messages/{cid}/read", json={"confirm": True}, headers=bob["headers"])
    assert res.status_code == 200
    assert res.json() == {"updatedCount": 1, "unreadCount": 0}

    conversations = client.get("/conversations", headers=bob["headers"]).json()["conversations"]
    assert {c["id"]: c["unreadCount"] for c in conversations}[cid] == 0

    res = client.post(f"/messages/{cid}/read", json={"confirm": True}, headers=bob["headers"])
    assert res.json()["updatedCount"] == 0

    assert _receipts_by_user(client, bob, cid)[bob["id"]]["readAt"] is not None


def test_mark_read_requires_confirm_flag(client):
    alice = signup(client, "alice")
    bob = signup(client, "bob")
    cid = create_group(client, alice, bob)
    send(client, alice, cid, "hello")

    for body in ({}, {"confirm": False}, None):
        res = client.post(f"/messages/{cid}/read", json=body, headers=bob["headers"])
        assert res.status_code == 400
        assert res.json()["error"] == "Confirmation flag required to mark messages as read"

    for loose in ("yes", "1", 1, "true"):
        res = client.post(f"/messages/{cid}/read", json={"confirm": loose}, headers=bob["headers"])
        assert res.status_code == 400

    assert _receipts_by_user(client, bob, cid)[bob["id"]]["isRead"] is False


def test_non_member_is_forbidden(client):
    alice = signup(client, "alice")
    bob = signup(client, "bob")
    carol = signup(client, "carol")
    cid = create_group(client, alice, bob)
    send(client, alice, cid, "hello")

    res = client.get(f"/messages/{cid}", headers=carol["headers"])
    assert res.status_code == 403
    assert res.json() == {"error": "Access denied: not a member of this conversation"}

    res = send(client, carol, cid, "let me in")
    assert res.status_code == 403

    res = client.post(f"/messages/{cid}/read", json={"confirm": True}, headers=carol["headers"])
    assert res.status_code == 403

    res = client.get(f"/messages/{cid}", headers=alice["headers"])
    assert [m["text"] for m in res.json()["messages"]] == ["hello"]


def test_unknown_conversation_is_404(client):
    alice = signup(client, "alice")
    res = send(client, alice, 999, "hello")
    assert res.status_code == 404
    assert res.json() == {"error": "Conversation not found"}


def test_empty_text_is_rejected(client):
    alice = signup(client, "alice")
    res = send(client, alice, 1, "   ")
    assert res.status_code == 400
    res = send(client, alice, 1, "")
    assert res.status_code == 400


def test_users_cannot_send_system_messages(client):
    alice = signup(client, "alice")
    res = send(client, alice, 1, "fake notice", messageType="SYSTEM")
    assert res.status_code == 400
    assert res.json() == {"error": "System messages cannot be sent by users"}


def test_messages_are_ordered_by_creation(client):
    alice = signup(client, "alice")
    bob = signup(client, "bob")
    cid = create_group(client, alice, bob)

    for i in range(5):
        author = alice if i % 2 == 0 else bob
        assert send(client, author, cid, f"m{i}").status_code == 200

    messages = client.get(f"/messages/{cid}", headers=alice["headers"]).json()["messages"]
    assert [m["text"] for m in messages] == ["m0", "m1", "m2", "m3", "m4"]
    stamps = [m["createdAt"] for m in messages]
    assert stamps == sorted(stamps)
    ids = [m["id"] for m in messages]
    assert ids == sorted(ids)


def test_client_token_makes_send_idempotent(client):
    alice = signup(client, "alice")

    first = send(client, alice, 1, "once", clientToken="tok-1").json()["message"]
    second = send(client, alice, 1, "once", clientToken="tok-1").json()["message"]
    assert first["id"] == second["id"]
    assert first["clientToken"] == "tok-1"

    messages = client.get("/messages", headers=alice["headers"]).json()["messages"]
    assert [m["text"] for m in messages] == ["once"]


def test_client_token_reuse_across_conversations_is_rejected(client):
    alice = signup(client, "alice")
    bob = signup(client, "bob")
    cid = create_group(client, alice, bob)

    assert send(client, alice, 1, "global", clientToken="tok-1").status_code == 200
    res = send(client, alice, cid, "group", clientToken="tok-1")
    assert res.status_code == 400


def test_global_conversation_is_open_to_everyone(client):
    alice = signup(client, "alice")
    bob = signup(client, "bob")

    assert send(client, alice, 1, "hi all").status_code == 200

    res = client.get("/messages", headers=bob["headers"])
    assert [m["text"] for m in res.json()["messages"]] == ["hi all"]

    # a message with no conversation id goes to the global conversation
    assert send(client, bob, None, "hello").status_code == 200
    res = client.get("/messages/1", headers=alice["headers"])
    assert [m["text"] for m in res.json()["messages"]] == ["hi all", "hello"]

    conversations = client.get("/conversations", headers=bob["headers"]).json()["conversations"]
    global_summary = next(c for c in conversations if c["isGlobal"])
    assert global_summary["id"] == 1
    assert global_summary["unreadCount"] == 1
    assert global_summary["messageCount"] == 2
