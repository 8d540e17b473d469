"""
One relayed call: a Twilio media-stream socket paired with a Gemini Live socket.

Lifecycle:
    INIT         telephony accepted, Gemini socket still connecting
    HANDSHAKING  start received (streamSid known); setup sent once Gemini is open
    ACTIVE       Gemini acknowledged setup
    CLOSING      stop / either socket closed / Gemini connect failed
    CLOSED       both sockets closed

The two receive loops run as separate tasks and each handles its own socket
strictly in order. `state`, `stream_sid` and `setup_sent` are only written
under `_lock`; shutdown is guarded by the state itself so it runs once.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import suppress
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

import structlog
from websockets.exceptions import ConnectionClosed, WebSocketException

from relay.audio_processor import AudioProcessor, AudioRates
from relay.config import Config
from relay.gemini_live import GeminiLiveSession
from relay.tenants import TenantProfile
from relay.translator import (
    ProtocolTranslator,
    TelephonyEvent,
    parse_ai_message,
    parse_telephony_message,
)

logger = structlog.get_logger(__name__)


class CallState(str, Enum):
    INIT = "init"
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


FORWARDING_STATES = {CallState.HANDSHAKING, CallState.ACTIVE}


def build_audio_processor(cfg: Config) -> AudioProcessor:
    rates = AudioRates(
        telephony_sr=cfg.TELEPHONY_SR,
        gemini_input_sr=cfg.GEMINI_INPUT_SR,
        gemini_output_sr=cfg.GEMINI_OUTPUT_SR,
    )
    return AudioProcessor(rates, mode=cfg.RESAMPLE_MODE)


class CallSession:
    def __init__(
        self,
        tenant: TenantProfile,
        telephony_ws: Any,
        cfg: Config,
        ai_factory: Callable[[str], GeminiLiveSession] = GeminiLiveSession,
        audio: Optional[AudioProcessor] = None,
    ):
        self.tenant = tenant
        self.cfg = cfg
        self.telephony = telephony_ws
        self.ai = ai_factory(cfg.gemini_url(tenant.api_key))
        self.translator = ProtocolTranslator(
            tenant, cfg.model_uri, audio or build_audio_processor(cfg)
        )

        self.state = CallState.INIT
        self.stream_sid: Optional[str] = None
        self.ai_open = False
        self.setup_sent = False
        self.stats = {"media_in": 0, "media_out": 0, "dropped": 0}

        self._lock = asyncio.Lock()
        self._closed = asyncio.Event()
        self._ai_task: Optional[asyncio.Task[None]] = None
        self.log = logger.bind(tenant=tenant.key)

    async def run(self) -> None:
        """Drive the call until both sockets are closed."""
        self._ai_task = asyncio.create_task(self._ai_side(), name=f"gemini-{self.tenant.key}")
        try:
            await self._telephony_loop()
        finally:
            await self.close("telephony stream ended")
            # Still connecting if Gemini never answered
            self._ai_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._ai_task

    # ---- Telephony -> Gemini ----
    async def _telephony_loop(self) -> None:
        try:
            async for raw in self.telephony:
                if self.state in (CallState.CLOSING, CallState.CLOSED):
                    break
                if not await self._handle_telephony(raw):
                    break
        except ConnectionClosed as e:
            self.log.warning("Telephony WS closed with error", code=e.rcvd.code if e.rcvd else None)

    async def _handle_telephony(self, raw: Union[str, bytes]) -> bool:
        """Handle one telephony frame; False ends the call."""
        try:
            event = parse_telephony_message(raw)
        except (ValueError, TypeError, KeyError) as e:
            self.stats["dropped"] += 1
            self.log.warning("Dropping malformed telephony message", error=str(e))
            return True

        if event.event == "start":
            await self._on_start(event.stream_sid)
        elif event.event == "media":
            await self._on_media(event)
        elif event.event == "stop":
            self.log.info("Telephony stop event received")
            return False
        else:
            self.log.debug("Ignoring telephony event", telephony_event=event.event)
        return True

    async def _on_start(self, stream_sid: str) -> None:
        async with self._lock:
            if self.state is not CallState.INIT:
                self.log.warning("Ignoring repeated start event", state=self.state.value)
                return
            self.stream_sid = stream_sid
            self.state = CallState.HANDSHAKING
            self.log = self.log.bind(stream_sid=stream_sid)
            self.log.info("Stream started", ai_open=self.ai_open)
            await self._send_setup_locked()

    async def _on_media(self, event: TelephonyEvent) -> None:
        if self.state not in FORWARDING_STATES or not self.setup_sent:
            # No streamSid yet, or Gemini not ready: nothing is buffered
            self.stats["dropped"] += 1
            return

        try:
            directive = self.translator.media_directive(event)
        except ValueError as e:
            self.stats["dropped"] += 1
            self.log.warning("Dropping undecodable telephony audio", error=str(e))
            return

        await self._send_ai(directive)
        self.stats["media_in"] += 1

    async def _send_setup_locked(self) -> None:
        if self.state is CallState.HANDSHAKING and self.ai_open and not self.setup_sent:
            self.setup_sent = True
            await self._send_ai(self.translator.setup_directive())
            self.log.info("Gemini setup sent", voice=self.tenant.voice)

    async def _send_ai(self, msg: Dict[str, Any]) -> None:
        try:
            await self.ai.send_json(msg)
        except ConnectionClosed:
            await self.close("gemini socket closed during send")

    # ---- Gemini -> Telephony ----
    async def _ai_side(self) -> None:
        try:
            if self.cfg.AI_CONNECT_TIMEOUT:
                await asyncio.wait_for(self.ai.connect(), timeout=self.cfg.AI_CONNECT_TIMEOUT)
            else:
                await self.ai.connect()
        except asyncio.TimeoutError:
            self.log.error("Gemini connect timed out", timeout=self.cfg.AI_CONNECT_TIMEOUT)
            await self.close("gemini connect timeout")
            return
        except (OSError, WebSocketException) as e:
            self.log.error("Gemini connect failed", error=str(e))
            await self.close("gemini connect failed")
            return

        async with self._lock:
            if self.state in (CallState.CLOSING, CallState.CLOSED):
                # Caller hung up while we were connecting
                await self.ai.close()
                return
            self.ai_open = True
            self.log.info("Connected to Gemini Live")
            await self._send_setup_locked()

        try:
            async for raw in self.ai.messages():
                await self._handle_ai(raw)
        finally:
            await self.close("gemini stream ended")

    async def _handle_ai(self, raw: Union[str, bytes]) -> None:
        try:
            msg = parse_ai_message(raw)
        except (ValueError, TypeError, KeyError) as e:
            self.log.warning("Dropping malformed Gemini message", error=str(e))
            return

        if msg.setup_complete:
            await self._on_setup_complete()

        if msg.interrupted and self.stream_sid:
            self.log.info("Gemini interrupted, clearing telephony playback")
            await self._send_telephony(self.translator.clear_event(self.stream_sid))

        for part in msg.audio_parts:
            if self.stream_sid is None or self.state not in FORWARDING_STATES:
                self.stats["dropped"] += 1
                continue
            try:
                event = self.translator.media_event(self.stream_sid, part)
            except ValueError as e:
                self.stats["dropped"] += 1
                self.log.warning("Dropping undecodable Gemini audio", error=str(e))
                continue
            await self._send_telephony(event)
            self.stats["media_out"] += 1

    async def _on_setup_complete(self) -> None:
        async with self._lock:
            if self.state is not CallState.HANDSHAKING:
                return
            self.state = CallState.ACTIVE
            self.log.info("Gemini setupComplete")
            greeting = self.translator.greeting_directive()
            if greeting is not None:
                await self._send_ai(greeting)
                self.log.info("Greeting triggered")

    async def _send_telephony(self, msg: Dict[str, Any]) -> None:
        try:
            await self.telephony.send(json.dumps(msg))
        except ConnectionClosed:
            await self.close("telephony socket closed during send")

    # ---- Shutdown ----
    async def close(self, reason: str) -> None:
        if self.state is CallState.CLOSED:
            return
        if self.state is CallState.CLOSING:
            await self._closed.wait()
            return

        self.state = CallState.CLOSING
        self.log.info("Closing call", reason=reason, **self.stats)
        try:
            with suppress(ConnectionClosed, OSError):
                await self.ai.close()
            with suppress(ConnectionClosed, OSError):
                await self.telephony.close()
        finally:
            self.state = CallState.CLOSED
            self._closed.set()
            self.log.info("Call closed")
