"""
Utility functions for the sync tool
"""

import base64
import io
import logging
import time
import uuid
import wave
from datetime import datetime
from typing import Optional

import pytz

TTS_SAMPLE_RATE = 24000
TTS_SAMPLE_WIDTH = 2  # 16-bit PCM
TTS_CHANNELS = 1


def now_ms() -> int:
    """Current time as epoch milliseconds"""
    return int(time.time() * 1000)


def new_book_id() -> str:
    """Generate a unique book identifier"""
    return uuid.uuid4().hex[:12]


def chapter_id_for(book_id: str, index: int) -> str:
    return f"{book_id}-{index}"


def format_timestamp(timestamp_ms: Optional[int], timezone_name: str = "Etc/UTC") -> str:
    """
    Format an epoch-millisecond timestamp in the given timezone
    Returns 'never' when the timestamp is unset
    """
    if timestamp_ms is None:
        return "never"

    try:
        tz = pytz.timezone(timezone_name)
    except pytz.exceptions.UnknownTimeZoneError:
        logging.getLogger(__name__).warning(
            f"Unknown timezone: {timezone_name}. Using UTC."
        )
        tz = pytz.UTC

    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz)
    return moment.strftime("%Y-%m-%d %H:%M:%S %Z")


def pcm_to_wav(
    pcm: bytes,
    sample_rate: int = TTS_SAMPLE_RATE,
    sample_width: int = TTS_SAMPLE_WIDTH,
    channels: int = TTS_CHANNELS,
) -> bytes:
    """Wrap raw little-endian PCM frames in a WAV container"""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(sample_width)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm)
    return buffer.getvalue()


def pcm_duration(
    pcm: bytes,
    sample_rate: int = TTS_SAMPLE_RATE,
    sample_width: int = TTS_SAMPLE_WIDTH,
    channels: int = TTS_CHANNELS,
) -> float:
    """Duration in seconds of a raw PCM buffer"""
    frame_size = sample_width * channels
    if frame_size <= 0 or sample_rate <= 0:
        return 0.0
    return round(len(pcm) / frame_size / sample_rate, 3)


def to_data_uri(payload: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(payload).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def mask_secret(value: Optional[str]) -> str:
    """Mask a credential for display, keeping the last four characters"""
    if not value:
        return "[NOT SET]"
    if len(value) <= 4:
        return "****"
    return f"****{value[-4:]}"


def from_data_uri(uri: str) -> bytes:
    """Decode the payload of a base64 data URI"""
    header, _, encoded = uri.partition(",")
    if not header.startswith("data:") or ";base64" not in header:
        raise ValueError("Not a base64 data URI")
    return base64.b64decode(encoded)
