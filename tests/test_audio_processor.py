"""Tests for the mu-law codec and the naive resamplers."""

import base64

import numpy as np
import pytest

from relay.audio_processor import (
    AudioFormatError,
    AudioProcessor,
    AudioRates,
    b64decode_strict,
    downsample_24k_to_8k,
    ulaw_decode,
    ulaw_encode,
    upsample_8k_to_16k,
)


def _pcm(samples) -> bytes:
    return np.asarray(samples, dtype="<i2").tobytes()


def _samples(data: bytes) -> np.ndarray:
    return np.frombuffer(data, dtype="<i2")


class TestUlawCodec:
    """G.711 mu-law encode/decode."""

    def test_known_codes(self) -> None:
        decoded = _samples(ulaw_decode(bytes([0xFF, 0x7F, 0x80, 0x00])))
        assert decoded.tolist() == [0, 0, 32124, -32124]

    def test_encode_decode_roundtrip_all_codes(self) -> None:
        codes = bytes(range(256))
        reencoded = ulaw_encode(ulaw_decode(codes))

        for code, back in zip(codes, reencoded):
            if code == 0x7F:
                # Negative zero has no distinct linear value
                assert back == 0xFF
            else:
                assert back == code

    def test_quantization_error_is_bounded(self) -> None:
        pcm = np.arange(-32000, 32000, 37, dtype=np.int16)
        restored = _samples(ulaw_decode(ulaw_encode(pcm.tobytes())))
        error = np.abs(restored.astype(np.int32) - pcm.astype(np.int32))
        # Decoded values sit mid-step; the widest step is 1024
        assert error.max() <= 512
        assert np.all(np.sign(restored[np.abs(pcm) > 8]) == np.sign(pcm[np.abs(pcm) > 8]))

    def test_encode_clips_full_scale(self) -> None:
        assert ulaw_encode(_pcm([32767, -32768])) == bytes([0x80, 0x00])

    def test_frame_sizes(self) -> None:
        # 20ms at 8kHz = 160 mu-law bytes = 320 bytes PCM16
        assert len(ulaw_decode(bytes(160))) == 320
        assert len(ulaw_encode(bytes(320))) == 160

    def test_empty(self) -> None:
        assert ulaw_decode(b"") == b""
        assert ulaw_encode(b"") == b""

    def test_odd_pcm_length_rejected(self) -> None:
        with pytest.raises(AudioFormatError):
            ulaw_encode(b"\x00\x01\x02")


class TestNaiveResampling:
    """Zero-order hold up, decimation down."""

    def test_upsample_duplicates_each_sample(self) -> None:
        source = np.array([1, -2, 300, -32768, 32767], dtype=np.int16)
        out = _samples(upsample_8k_to_16k(source.tobytes()))

        assert len(out) == 2 * len(source)
        assert np.array_equal(out[0::2], source)
        assert np.array_equal(out[1::2], out[0::2])

    @pytest.mark.parametrize("length", [0, 1, 2, 3, 4, 5, 480, 481, 482])
    def test_downsample_keeps_every_third(self, length: int) -> None:
        source = np.arange(length, dtype=np.int16)
        out = _samples(downsample_24k_to_8k(source.tobytes()))

        assert len(out) == length // 3
        assert np.array_equal(out, source[::3][: length // 3])

    def test_odd_byte_count_rejected(self) -> None:
        with pytest.raises(AudioFormatError):
            upsample_8k_to_16k(b"\x00")
        with pytest.raises(AudioFormatError):
            downsample_24k_to_8k(b"\x00\x00\x00")


class TestAudioProcessor:
    """Base64 in, base64 out pipelines used by the translator."""

    def test_input_160_ulaw_bytes_become_640_pcm_bytes(self) -> None:
        processor = AudioProcessor()
        ulaw = ulaw_encode(_pcm(np.linspace(-8000, 8000, 160)))

        out = base64.b64decode(
            processor.process_input_ulaw_b64_to_gemini_16k_b64(base64.b64encode(ulaw).decode())
        )

        assert len(out) == 640
        decoded_8k = _samples(ulaw_decode(ulaw))
        assert np.array_equal(_samples(out)[0::2], decoded_8k)

    @pytest.mark.parametrize("pcm_bytes,ulaw_bytes", [(960, 160), (480, 80), (962, 160)])
    def test_output_24k_pcm_to_8k_ulaw(self, pcm_bytes: int, ulaw_bytes: int) -> None:
        processor = AudioProcessor()
        pcm = base64.b64encode(bytes(pcm_bytes)).decode()

        out = base64.b64decode(processor.process_output_gemini_b64_to_ulaw_b64(pcm))

        assert len(out) == ulaw_bytes
        assert set(out) == {0xFF}

    def test_invalid_base64_rejected(self) -> None:
        processor = AudioProcessor()
        with pytest.raises(AudioFormatError):
            processor.process_input_ulaw_b64_to_gemini_16k_b64("not base64!!")
        with pytest.raises(AudioFormatError):
            b64decode_strict("abc")

    def test_unknown_mode_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown resample mode"):
            AudioProcessor(mode="sinc")

    def test_polyphase_mode_lengths(self) -> None:
        processor = AudioProcessor(AudioRates(), mode="polyphase")
        ulaw = base64.b64encode(bytes([0xFF] * 160)).decode()

        out = base64.b64decode(processor.process_input_ulaw_b64_to_gemini_16k_b64(ulaw))

        # Approximately 2x; the filter may trim or pad a sample
        assert 620 <= len(out) <= 660
