import asyncio

import httpx

from chatrooms.client.rest import RestClient
from chatrooms.client.session import LiveSession
from chatrooms.client.state import DeliveryStatus
from chatrooms.db.database import build_engine, init_db
from chatrooms.main import create_app

BASE_URL = "http://testserver"


def test_send_falls_back_to_rest_when_offline(tmp_path):
    async def scenario():
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'client.db'}")
        app = create_app(engine=engine)
        await init_db(engine)

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as http:
            for name in ("alice", "bob"):
                res = await http.post("/auth/signup", json={"username": name, "password": "secret123"})
                assert res.status_code == 201

            rest = RestClient(BASE_URL, client=http)
            alice = await rest.login("alice", "secret123")
            session = LiveSession(BASE_URL, rest.token, alice["id"], "alice", rest=rest)
            assert not session.connected

            local = await session.send_message(1, "offline hello")
            view = session.view(1)
            assert [m.text for m in view.messages] == ["offline hello"]
            assert view.messages[0].status == DeliveryStatus.CONFIRMED
            assert view.messages[0].client_token == local.client_token
            message_id = view.messages[0].id

            # the same message later arriving over the socket is not shown twice
            echoed = view.messages[0]
            session.handle_frame(
                {
                    "type": "chat",
                    "message": {
                        "id": message_id,
                        "text": echoed.text,
                        "type": "TEXT",
                        "senderId": alice["id"],
                        "conversationId": 1,
                        "createdAt": echoed.created_at,
                        "clientToken": local.client_token,
                    },
                }
            )
            assert len(view.messages) == 1

            bob_rest = RestClient(BASE_URL, client=http)
            bob_user = await bob_rest.login("bob", "secret123")
            summaries = await bob_rest.fetch_conversations()
            assert next(c for c in summaries if c["id"] == 1)["unreadCount"] == 1

            bob = LiveSession(BASE_URL, bob_rest.token, bob_user["id"], "bob", rest=bob_rest)
            await bob.refresh_conversations()
            assert bob.unread.counts == {1: 1}
            view = await bob.open_conversation(1)
            assert [m.id for m in view.messages] == [message_id]
            assert bob.unread.total == 0
            summaries = await bob_rest.fetch_conversations()
            assert next(c for c in summaries if c["id"] == 1)["unreadCount"] == 0

            heartbeat = await bob_rest.heartbeat()
            assert heartbeat["success"] is True

        await engine.dispose()

    asyncio.run(scenario())
