"""Base64, data URI, and PCM helpers shared by generation and export.

Helpers that touch the network never raise: a failed fetch degrades to an
empty payload or a placeholder image so one bad reference cannot abort the
operation it sits in.
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE = 24000
FALLBACK_AUDIO_DURATION = 5.0
FETCH_TIMEOUT = 30.0

# 1x1 black PNG
PLACEHOLDER_PNG = bytes([
    0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A, 0x00, 0x00, 0x00, 0x0D, 0x49, 0x48, 0x44, 0x52,
    0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x01, 0x08, 0x00, 0x00, 0x00, 0x00, 0x3A, 0x7E, 0x9B,
    0x55, 0x00, 0x00, 0x00, 0x0A, 0x49, 0x44, 0x41, 0x54, 0x08, 0xD7, 0x63, 0x60, 0x00, 0x00, 0x00,
    0x02, 0x00, 0x01, 0xE2, 0x21, 0xBC, 0x33, 0x00, 0x00, 0x00, 0x00, 0x49, 0x45, 0x4E, 0x44, 0xAE,
    0x42, 0x60, 0x82,
])


class CodecError(Exception):
    """Raised by strict decoding helpers."""

    pass


@dataclass
class EncodedImage:
    """Base64 payload plus its media type, as sent to the provider."""

    data: str
    mime_type: str

    @property
    def is_empty(self) -> bool:
        return not self.data


def is_data_uri(value: Optional[str]) -> bool:
    return bool(value) and value.startswith("data:")


def make_data_uri(data: str, mime_type: str = "image/png") -> str:
    """Build a data URI from an already base64-encoded payload."""
    return f"data:{mime_type};base64,{data}"


def parse_data_uri(uri: str) -> tuple[str, str]:
    """Split a data URI into (base64 payload, media type).

    Raises:
        CodecError: If the value is not a data URI.
    """
    if not is_data_uri(uri) or "," not in uri:
        raise CodecError("Not a data URI")
    header, data = uri.split(",", 1)
    mime_type = header[len("data:"):].split(";")[0] or "application/octet-stream"
    return data, mime_type


async def _fetch(url: str, client: Optional[httpx.AsyncClient]) -> httpx.Response:
    if client is not None:
        response = await client.get(url, follow_redirects=True)
    else:
        async with httpx.AsyncClient(timeout=FETCH_TIMEOUT) as owned:
            response = await owned.get(url, follow_redirects=True)
    response.raise_for_status()
    return response


async def to_base64(
    source: str, client: Optional[httpx.AsyncClient] = None
) -> EncodedImage:
    """Convert a data URI or remote URL to a base64 payload for the provider.

    Args:
        source: Data URI or http(s) URL.
        client: Optional shared HTTP client.

    Returns:
        EncodedImage. An empty payload means "no reference available".
    """
    if is_data_uri(source):
        data, mime_type = parse_data_uri(source)
        return EncodedImage(data=data, mime_type=mime_type)

    try:
        response = await _fetch(source, client)
        mime_type = response.headers.get("content-type", "image/png").split(";")[0]
        return EncodedImage(
            data=base64.b64encode(response.content).decode("ascii"),
            mime_type=mime_type,
        )
    except Exception as e:
        logger.warning(f"Failed to convert image to base64 ({source[:80]}): {e}")
        return EncodedImage(data="", mime_type="image/png")


def decode_pcm16(base64_pcm: str) -> bytes:
    """Strictly decode a base64 PCM16 payload.

    Raises:
        CodecError: On invalid base64 or a byte count that is not whole samples.
    """
    try:
        raw = base64.b64decode(base64_pcm, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise CodecError(f"Invalid base64 audio: {e}") from e
    if len(raw) % 2:
        raise CodecError(f"PCM16 payload has odd byte count ({len(raw)})")
    return raw


def decode_pcm16_lenient(base64_pcm: str) -> bytes:
    """Decode PCM16 for staging, dropping a trailing odd byte.

    Returns empty bytes when the payload is not base64 at all.
    """
    try:
        raw = base64.b64decode(base64_pcm or "")
    except (binascii.Error, ValueError, TypeError) as e:
        logger.warning(f"Audio payload is not valid base64, staging silence: {e}")
        return b""
    return raw[: len(raw) - (len(raw) % 2)]


def pcm16_duration_seconds(
    base64_pcm: str, sample_rate: int = DEFAULT_SAMPLE_RATE
) -> float:
    """Duration of base64 mono PCM16 audio in seconds.

    Malformed or empty input returns FALLBACK_AUDIO_DURATION. The value only
    sizes video segments, so an approximation is acceptable.
    """
    if sample_rate <= 0:
        return FALLBACK_AUDIO_DURATION
    try:
        raw = decode_pcm16(base64_pcm)
    except CodecError:
        logger.warning(
            f"Could not determine audio duration, defaulting to {FALLBACK_AUDIO_DURATION}s"
        )
        return FALLBACK_AUDIO_DURATION
    sample_count = len(raw) // 2
    if sample_count == 0:
        return FALLBACK_AUDIO_DURATION
    return sample_count / sample_rate


async def get_image_bytes(
    url: str, client: Optional[httpx.AsyncClient] = None
) -> bytes:
    """Resolve a display URL (remote or data URI) to raw image bytes.

    Any failure substitutes PLACEHOLDER_PNG instead of aborting an export.
    """
    if not url:
        return PLACEHOLDER_PNG

    if is_data_uri(url):
        try:
            data, _ = parse_data_uri(url)
            return base64.b64decode(data, validate=True)
        except (CodecError, binascii.Error, ValueError) as e:
            logger.error(f"Failed to parse image data URI: {e}")
            return PLACEHOLDER_PNG

    try:
        response = await _fetch(url, client)
        return response.content
    except Exception as e:
        logger.warning(f"Failed to fetch image: {url[:80]}. Error: {e}. Using fallback.")
        return PLACEHOLDER_PNG


def sniff_image_extension(data: bytes) -> str:
    """Guess a file extension from image magic bytes, defaulting to png."""
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "png"
    if data[:3] == b"\xff\xd8\xff":
        return "jpg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    return "png"
