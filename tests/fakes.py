"""Fake sockets and message builders for session tests."""

import asyncio
import base64
import json
from typing import Any, Callable, List, Optional, Union


_HANGUP = object()


class FakeTelephonySocket:
    """Stands in for a websockets ServerConnection on the Twilio side."""

    def __init__(self, path: str = "/stream"):
        self.request = type("Request", (), {"path": path})()
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: List[dict] = []
        self.close_calls = 0
        self.close_code: Optional[int] = None

    def push(self, msg: Union[str, dict]) -> None:
        self.incoming.put_nowait(msg if isinstance(msg, str) else json.dumps(msg))

    def hangup(self) -> None:
        self.incoming.put_nowait(_HANGUP)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        while True:
            item = await self.incoming.get()
            if item is _HANGUP:
                return
            yield item

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls += 1
        self.close_code = code
        self.hangup()


class FakeGeminiSession:
    """Stands in for GeminiLiveSession; connect() waits on `open_gate`."""

    def __init__(self, url: str, open_immediately: bool = True,
                 connect_error: Optional[Exception] = None):
        self.url = url
        self.open_gate = asyncio.Event()
        if open_immediately:
            self.open_gate.set()
        self.connect_error = connect_error
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: List[dict] = []
        self.close_calls = 0

    async def connect(self) -> None:
        await self.open_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error

    async def send_json(self, msg: dict) -> None:
        self.sent.append(msg)

    def push(self, msg: Union[str, dict]) -> None:
        self.incoming.put_nowait(msg if isinstance(msg, str) else json.dumps(msg))

    def hangup(self) -> None:
        self.incoming.put_nowait(_HANGUP)

    async def messages(self):
        while True:
            item = await self.incoming.get()
            if item is _HANGUP:
                return
            yield item

    async def close(self) -> None:
        self.close_calls += 1
        self.hangup()


class GeminiFactory:
    def __init__(self, **kwargs: Any):
        self.kwargs = kwargs
        self.instances: List[FakeGeminiSession] = []

    def __call__(self, url: str) -> FakeGeminiSession:
        session = FakeGeminiSession(url, **self.kwargs)
        self.instances.append(session)
        return session


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


def start_event(stream_sid: str = "abc123") -> dict:
    return {
        "event": "start",
        "sequenceNumber": "1",
        "start": {"streamSid": stream_sid, "callSid": "CA123", "tracks": ["inbound"]},
        "streamSid": stream_sid,
    }


def media_event(ulaw: bytes, stream_sid: str = "abc123") -> dict:
    return {
        "event": "media",
        "streamSid": stream_sid,
        "media": {"track": "inbound", "payload": base64.b64encode(ulaw).decode()},
    }


def gemini_audio(pcm: bytes, camel: bool = True) -> dict:
    data = base64.b64encode(pcm).decode()
    if camel:
        return {"serverContent": {"modelTurn": {"parts": [
            {"inlineData": {"mimeType": "audio/pcm;rate=24000", "data": data}}
        ]}}}
    return {"server_content": {"model_turn": {"parts": [
        {"inline_data": {"mime_type": "audio/pcm;rate=24000", "data": data}}
    ]}}}


