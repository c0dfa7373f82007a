"""G.711 mu-law codec and 8 kHz / 24 kHz rate conversion.

Every function here is pure. Buffer helpers operate on little-endian
16-bit PCM ``bytes`` and mu-law ``bytes`` so they can be handed straight
to websocket payloads; sample-level work is vectorized with numpy through
lookup tables built from the scalar reference functions.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Final

import numpy as np

BIAS: Final[int] = 0x84
CLIP: Final[int] = 32635

SIGN_BIT: Final[int] = 0x80
QUANT_MASK: Final[int] = 0x0F
SEG_SHIFT: Final[int] = 4
SEG_MASK: Final[int] = 0x70

SAMPLE_RATE_8K: Final[int] = 8000
SAMPLE_RATE_24K: Final[int] = 24000
RATE_FACTOR: Final[int] = SAMPLE_RATE_24K // SAMPLE_RATE_8K
FILTER_TAPS: Final[int] = 5
DOWNSAMPLE_GAIN: Final[float] = 1.2

# Segment number for the biased magnitude >> 7.
EXP_LUT: Final[tuple[int, ...]] = tuple(
    [0, 0, 1, 1] + [2] * 4 + [3] * 8 + [4] * 16 + [5] * 32 + [6] * 64 + [7] * 128
)


def pcm_to_mulaw(sample: int) -> int:
    """Encode one signed 16-bit PCM sample as a mu-law byte."""

    sign = (sample >> 8) & SIGN_BIT
    if sign:
        sample = -sample
    if sample > CLIP:
        sample = CLIP

    sample += BIAS
    exponent = EXP_LUT[(sample >> 7) & 0xFF]
    mantissa = (sample >> (exponent + 3)) & QUANT_MASK
    return ~(sign | (exponent << SEG_SHIFT) | mantissa) & 0xFF


def mulaw_to_pcm(mulaw: int) -> int:
    """Decode one mu-law byte to a signed 16-bit PCM sample."""

    mulaw = ~mulaw & 0xFF
    segment = (mulaw & SEG_MASK) >> SEG_SHIFT
    magnitude = (((mulaw & QUANT_MASK) << 3) + BIAS) << segment
    magnitude -= BIAS
    return -magnitude if mulaw & SIGN_BIT else magnitude


def quantization_step(mulaw: int) -> int:
    """Width of the PCM interval that encodes to ``mulaw``."""

    segment = ((~mulaw & 0xFF) & SEG_MASK) >> SEG_SHIFT
    return 1 << (segment + 3)


def convert_buffer(buffer: bytes | None, converter: Callable[[int], int]) -> bytes:
    """Map every byte of ``buffer`` through ``converter`` (one output byte per input byte)."""

    if not buffer:
        return b""
    return bytes(converter(value) & 0xFF for value in buffer)


_DECODE_TABLE = np.array([mulaw_to_pcm(value) for value in range(256)], dtype=np.int16)
_ENCODE_TABLE = np.array([pcm_to_mulaw(value) for value in range(-32768, 32768)], dtype=np.uint8)


def _pcm16_samples(buffer: bytes | None) -> np.ndarray:
    if not buffer:
        return np.zeros(0, dtype="<i2")
    usable = len(buffer) - (len(buffer) % 2)
    return np.frombuffer(buffer[:usable], dtype="<i2")


def encode_samples(pcm: np.ndarray) -> bytes:
    """Encode an int16 sample array to mu-law bytes."""

    if pcm.size == 0:
        return b""
    return _ENCODE_TABLE[pcm.astype(np.int32) + 32768].tobytes()


def decode_samples(mulaw: bytes | None) -> np.ndarray:
    """Decode mu-law bytes to an int16 sample array."""

    if not mulaw:
        return np.zeros(0, dtype=np.int16)
    return _DECODE_TABLE[np.frombuffer(mulaw, dtype=np.uint8)]


def convert_pcm8k_to_mulaw(buffer: bytes | None) -> bytes:
    """16-bit PCM @ 8 kHz to mu-law @ 8 kHz; an odd trailing byte is dropped."""

    return encode_samples(_pcm16_samples(buffer))


def convert_mulaw_to_pcm8k(buffer: bytes | None) -> bytes:
    """mu-law @ 8 kHz to 16-bit little-endian PCM @ 8 kHz."""

    return decode_samples(buffer).astype("<i2").tobytes()


def convert_pcm24k_to_8k_mulaw(buffer: bytes | None) -> bytes:
    """Decimate 16-bit PCM @ 24 kHz to mu-law @ 8 kHz.

    Each kept sample is the centered moving average of up to
    ``FILTER_TAPS`` neighbours (the window shrinks at the buffer edges and
    is divided by the taps actually used), boosted by ``DOWNSAMPLE_GAIN``
    and clipped to the int16 range.
    """

    pcm = _pcm16_samples(buffer).astype(np.float64)
    out_count = pcm.size // RATE_FACTOR
    if out_count == 0:
        return b""

    half = FILTER_TAPS // 2
    kernel = np.ones(FILTER_TAPS)
    edge = np.zeros(half)
    sums = np.convolve(np.concatenate([edge, pcm, edge]), kernel, mode="valid")
    counts = np.convolve(np.concatenate([edge, np.ones(pcm.size), edge]), kernel, mode="valid")

    centers = np.arange(out_count) * RATE_FACTOR
    filtered = np.round(sums[centers] / counts[centers])
    boosted = np.clip(np.round(filtered * DOWNSAMPLE_GAIN), -32768, 32767)
    return encode_samples(boosted.astype(np.int16))


def convert_8k_mulaw_to_pcm24k(buffer: bytes | None) -> bytes:
    """Upsample mu-law @ 8 kHz to 16-bit PCM @ 24 kHz by linear interpolation.

    Every source sample is followed by two points a third and two thirds of
    the way to its successor; the final sample is repeated three times.
    """

    pcm = decode_samples(buffer).astype(np.float64)
    if pcm.size == 0:
        return b""

    following = np.append(pcm[1:], pcm[-1])
    step = (following - pcm) / RATE_FACTOR
    upsampled = np.empty(pcm.size * RATE_FACTOR, dtype=np.float64)
    upsampled[0::RATE_FACTOR] = pcm
    upsampled[1::RATE_FACTOR] = np.round(pcm + step)
    upsampled[2::RATE_FACTOR] = np.round(pcm + 2 * step)
    return upsampled.astype("<i2").tobytes()
