from fastapi import Request

from chatrooms.realtime.broadcaster import LiveEventBroadcaster


def get_broadcaster(request: Request) -> LiveEventBroadcaster:
    return request.app.state.broadcaster
