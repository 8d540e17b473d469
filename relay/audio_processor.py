"""
Audio processing for Twilio media streams ↔ Gemini Live.

- Twilio: 8kHz G.711 mu-law (base64)
- Gemini input: 16kHz int16 PCM (base64)
- Gemini output: 24kHz int16 PCM (base64) → downsample back to 8kHz mu-law

The default resampling is deliberately naive: 8k→16k repeats every sample,
24k→8k keeps every third one. There is no anti-aliasing filter, so expect
some aliasing on the Gemini→caller leg. RESAMPLE_MODE=polyphase swaps in
librosa for callers that want better quality at the cost of latency.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

import librosa
import numpy as np

# G.711 mu-law constants (16-bit linear variant)
ULAW_BIAS = 0x84
ULAW_CLIP = 32635


class AudioFormatError(ValueError):
    """Payload that cannot be decoded as the expected audio format."""


def _build_decode_table() -> np.ndarray:
    codes = ~np.arange(256, dtype=np.int32) & 0xFF
    sign = codes & 0x80
    exponent = (codes >> 4) & 0x07
    mantissa = codes & 0x0F
    magnitude = (((mantissa << 3) + ULAW_BIAS) << exponent) - ULAW_BIAS
    return np.where(sign != 0, -magnitude, magnitude).astype(np.int16)


def _build_encode_table() -> np.ndarray:
    pcm = np.arange(-32768, 32768, dtype=np.int32)
    sign = np.where(pcm < 0, 0x80, 0)
    magnitude = np.minimum(np.abs(pcm), ULAW_CLIP) + ULAW_BIAS

    exponent = np.zeros_like(magnitude)
    for exp in range(1, 8):
        exponent[magnitude >= (0x80 << exp)] = exp

    mantissa = (magnitude >> (exponent + 3)) & 0x0F
    return (~(sign | (exponent << 4) | mantissa) & 0xFF).astype(np.uint8)


_ULAW_TO_PCM = _build_decode_table()
# Indexed by int16 value + 32768
_PCM_TO_ULAW = _build_encode_table()


def _pcm16_from_bytes(data: bytes) -> np.ndarray:
    if len(data) % 2:
        raise AudioFormatError(f"PCM16 buffer has odd length {len(data)}")
    return np.frombuffer(data, dtype="<i2")


def ulaw_decode(ulaw_data: bytes) -> bytes:
    """mu-law bytes → little-endian PCM16 bytes (one sample per input byte)."""
    codes = np.frombuffer(ulaw_data, dtype=np.uint8)
    return _ULAW_TO_PCM[codes].astype("<i2").tobytes()


def ulaw_encode(pcm_data: bytes) -> bytes:
    """Little-endian PCM16 bytes → mu-law bytes."""
    samples = _pcm16_from_bytes(pcm_data).astype(np.int32)
    return _PCM_TO_ULAW[samples + 32768].tobytes()


def upsample_8k_to_16k(pcm_data: bytes) -> bytes:
    """Zero-order hold: every input sample is emitted twice."""
    samples = _pcm16_from_bytes(pcm_data)
    return np.repeat(samples, 2).astype("<i2").tobytes()


def downsample_24k_to_8k(pcm_data: bytes) -> bytes:
    """Keep every third sample; a trailing partial group is dropped."""
    samples = _pcm16_from_bytes(pcm_data)
    keep = len(samples) // 3
    return samples[: keep * 3 : 3].astype("<i2").tobytes()


def b64decode_strict(payload: str) -> bytes:
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, TypeError, ValueError) as e:
        raise AudioFormatError(f"Invalid base64 audio payload: {e}") from e


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


@dataclass(frozen=True)
class AudioRates:
    telephony_sr: int = 8000
    gemini_input_sr: int = 16000
    gemini_output_sr: int = 24000


class AudioProcessor:
    def __init__(self, rates: AudioRates = AudioRates(), mode: str = "naive"):
        if mode not in {"naive", "polyphase"}:
            raise ValueError(f"Unknown resample mode: {mode}")
        self.rates = rates
        self.mode = mode

    @staticmethod
    def int16_to_float32(samples: np.ndarray) -> np.ndarray:
        return samples.astype(np.float32) / 32768.0

    @staticmethod
    def float32_to_int16(samples: np.ndarray) -> np.ndarray:
        samples = np.clip(samples, -1.0, 1.0)
        return np.round(samples * 32767.0).astype("<i2")

    def resample_polyphase(self, pcm_data: bytes, orig_sr: int, target_sr: int) -> bytes:
        samples = _pcm16_from_bytes(pcm_data)
        if samples.size == 0 or orig_sr == target_sr:
            return pcm_data
        out_f = librosa.resample(
            self.int16_to_float32(samples), orig_sr=orig_sr, target_sr=target_sr,
            res_type="polyphase",
        )
        return self.float32_to_int16(out_f).tobytes()

    # ---- Input (Twilio -> Gemini) ----
    def process_input_ulaw_b64_to_gemini_16k_b64(self, payload_b64: str) -> str:
        pcm_8k = ulaw_decode(b64decode_strict(payload_b64))
        if self.mode == "polyphase":
            pcm_16k = self.resample_polyphase(
                pcm_8k, self.rates.telephony_sr, self.rates.gemini_input_sr
            )
        else:
            pcm_16k = upsample_8k_to_16k(pcm_8k)
        return b64encode(pcm_16k)

    # ---- Output (Gemini -> Twilio) ----
    def process_output_gemini_b64_to_ulaw_b64(self, audio_b64: str) -> str:
        pcm_24k = b64decode_strict(audio_b64)
        if self.mode == "polyphase":
            pcm_8k = self.resample_polyphase(
                pcm_24k, self.rates.gemini_output_sr, self.rates.telephony_sr
            )
        else:
            pcm_8k = downsample_24k_to_8k(pcm_24k)
        return b64encode(ulaw_encode(pcm_8k))
