"""
Protocol translation between Twilio media-stream events and Gemini Live.

Twilio → Gemini
- start: carries start.streamSid; becomes the Gemini setup message
- media: media.payload (base64 mu-law 8kHz) becomes a realtime_input chunk
- stop:  ends the call; nothing is sent to Gemini

Gemini → Twilio
- setup_complete: acknowledgment, no telephony output
- server_content.model_turn.parts[].inline_data: one media event per part
- server_content.interrupted: a clear event so Twilio drops queued playback

Nothing here touches a socket; the session decides when to send.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from relay.audio_processor import AudioProcessor
from relay.gemini_live import (
    build_greeting_message,
    build_realtime_audio_message,
    build_setup_message,
    normalize_message,
)
from relay.tenants import TenantProfile


class MalformedMessage(ValueError):
    """A message that parsed as JSON but has the wrong shape."""


@dataclass(frozen=True)
class TelephonyEvent:
    event: str
    stream_sid: Optional[str] = None
    payload: Optional[str] = None


@dataclass(frozen=True)
class AiMessage:
    setup_complete: bool = False
    audio_parts: Tuple[str, ...] = ()
    interrupted: bool = False


def _loads_object(raw: Union[str, bytes]) -> Dict[str, Any]:
    msg = json.loads(raw)
    if not isinstance(msg, dict):
        raise MalformedMessage(f"Expected a JSON object, got {type(msg).__name__}")
    return msg


def parse_telephony_message(raw: Union[str, bytes]) -> TelephonyEvent:
    msg = _loads_object(raw)
    event = msg.get("event")
    if not isinstance(event, str):
        raise MalformedMessage("Missing 'event' field")

    if event == "start":
        start = msg.get("start") or {}
        stream_sid = (start.get("streamSid") if isinstance(start, dict) else None) or msg.get(
            "streamSid"
        )
        if not stream_sid:
            raise MalformedMessage("start event without streamSid")
        return TelephonyEvent(event="start", stream_sid=str(stream_sid))

    if event == "media":
        media = msg.get("media")
        payload = media.get("payload") if isinstance(media, dict) else None
        if not isinstance(payload, str):
            raise MalformedMessage("media event without media.payload")
        return TelephonyEvent(event="media", stream_sid=msg.get("streamSid"), payload=payload)

    return TelephonyEvent(event=event, stream_sid=msg.get("streamSid"))


def parse_ai_message(raw: Union[str, bytes]) -> AiMessage:
    msg = normalize_message(_loads_object(raw))

    setup_complete = "setup_complete" in msg

    content = msg.get("server_content")
    if content is None:
        return AiMessage(setup_complete=setup_complete)
    if not isinstance(content, dict):
        raise MalformedMessage("server_content is not an object")

    model_turn = content.get("model_turn") or {}
    if not isinstance(model_turn, dict):
        raise MalformedMessage("model_turn is not an object")
    parts = model_turn.get("parts") or []
    if not isinstance(parts, list):
        raise MalformedMessage("model_turn.parts is not a list")

    audio_parts = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        inline = part.get("inline_data")
        if isinstance(inline, dict) and isinstance(inline.get("data"), str) and inline["data"]:
            audio_parts.append(inline["data"])

    return AiMessage(
        setup_complete=setup_complete,
        audio_parts=tuple(audio_parts),
        interrupted=bool(content.get("interrupted")),
    )


class ProtocolTranslator:
    """Per-call translator bound to one tenant's profile."""

    def __init__(self, tenant: TenantProfile, model_uri: str, audio: AudioProcessor):
        self.tenant = tenant
        self.model_uri = model_uri
        self.audio = audio

    def setup_directive(self) -> Dict[str, Any]:
        return build_setup_message(self.model_uri, self.tenant.voice, self.tenant.system_prompt)

    def greeting_directive(self) -> Optional[Dict[str, Any]]:
        if not self.tenant.greeting:
            return None
        return build_greeting_message(self.tenant.greeting)

    def media_directive(self, event: TelephonyEvent) -> Dict[str, Any]:
        audio_b64 = self.audio.process_input_ulaw_b64_to_gemini_16k_b64(event.payload or "")
        return build_realtime_audio_message(audio_b64)

    def media_event(self, stream_sid: str, audio_part_b64: str) -> Dict[str, Any]:
        payload = self.audio.process_output_gemini_b64_to_ulaw_b64(audio_part_b64)
        return {"event": "media", "streamSid": stream_sid, "media": {"payload": payload}}

    @staticmethod
    def clear_event(stream_sid: str) -> Dict[str, Any]:
        return {"event": "clear", "streamSid": stream_sid}
