"""
Gemini Live client for the relay.

Message builders for the BidiGenerateContent protocol plus a thin socket
wrapper. Gemini has shipped both camelCase and snake_case field names over
time; `normalize_message` folds every inbound message to snake_case so the
translator only ever sees one spelling.
"""

from __future__ import annotations

import json
import re
import ssl
from typing import Any, AsyncIterator, Dict, Optional, Union

import certifi
import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

logger = structlog.get_logger(__name__)

INPUT_MIME_TYPE = "audio/pcm;rate=16000"

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def build_setup_message(model_uri: str, voice: str, system_instructions: str) -> Dict[str, Any]:
    return {
        "setup": {
            "model": model_uri,
            "generation_config": {
                "response_modalities": ["AUDIO"],
                "speech_config": {
                    "voice_config": {
                        "prebuilt_voice_config": {"voice_name": voice}
                    }
                },
            },
            "system_instruction": {"parts": [{"text": system_instructions}]},
        }
    }


def build_realtime_audio_message(audio_b64: str) -> Dict[str, Any]:
    return {
        "realtime_input": {
            "media_chunks": [{"data": audio_b64, "mime_type": INPUT_MIME_TYPE}]
        }
    }


def build_greeting_message(text: str) -> Dict[str, Any]:
    """
    A user turn asking the model to speak first, so the caller is not met
    with silence until they say something.
    """
    return {
        "client_content": {
            "turns": [{"role": "user", "parts": [{"text": text}]}],
            "turn_complete": True,
        }
    }


def to_snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", name).lower()


def normalize_message(value: Any) -> Any:
    """Recursively rewrite dict keys to snake_case; values are left alone."""
    if isinstance(value, dict):
        return {to_snake_case(k): normalize_message(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_message(v) for v in value]
    return value


class GeminiLiveSession:
    """One outbound Gemini Live socket, owned by a single call."""

    def __init__(self, url: str):
        self.url = url
        self._ws: Optional[ClientConnection] = None

    async def connect(self) -> None:
        kwargs: Dict[str, Any] = {}
        if self.url.startswith("wss://"):
            kwargs["ssl"] = ssl.create_default_context(cafile=certifi.where())
        # open_timeout is enforced by the caller, if at all
        self._ws = await connect(self.url, open_timeout=None, **kwargs)

    async def send_json(self, msg: dict) -> None:
        if not self._ws:
            raise RuntimeError("GeminiLiveSession not connected")
        await self._ws.send(json.dumps(msg))

    async def messages(self) -> AsyncIterator[Union[str, bytes]]:
        """Raw frames in arrival order; parsing is left to the caller."""
        if not self._ws:
            raise RuntimeError("GeminiLiveSession not connected")
        try:
            async for raw in self._ws:
                yield raw
        except ConnectionClosed as e:
            logger.warning("Gemini WS closed", code=e.rcvd.code if e.rcvd else None,
                           reason=e.rcvd.reason if e.rcvd else None)

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
