"""Media format tables and magic-byte sniffing for uploaded audio."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

from ..errors import InvalidRequestError


SUPPORTED_AUDIO_FORMATS: Tuple[str, ...] = ("mp3", "wav", "ogg", "flac", "aac", "m4a", "webm")

SUPPORTED_IMAGE_FORMATS: Tuple[str, ...] = ("jpg", "jpeg", "png", "webp", "avif", "tiff", "gif")

FIT_OPTIONS: Tuple[str, ...] = ("cover", "contain", "fill", "inside", "outside")

CONTENT_TYPES: Dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "avif": "image/avif",
    "tiff": "image/tiff",
    "gif": "image/gif",
}

_M4A_BRANDS = {b"M4A ", b"isom", b"mp42", b"mp41"}


class UnsupportedAudioFormatError(InvalidRequestError):
    """Raised when an upload is recognised as a format the service refuses."""

    def __init__(self, audio_format: str) -> None:
        super().__init__(
            f"Unsupported audio format: {audio_format}. "
            f"Supported formats: {', '.join(SUPPORTED_AUDIO_FORMATS)}"
        )
        self.audio_format = audio_format


def detect_audio_format(data: bytes) -> Optional[str]:
    """Classify *data* by its container signature.

    Returns ``None`` when the buffer is shorter than four bytes or no signature
    matches. The ADTS sync word is tested before the generic MPEG frame sync
    because every ADTS header also satisfies the MP3 mask.
    """

    if len(data) < 4:
        return None

    head = data[:4]
    if head == b"RIFF" and data[8:12] == b"WAVE":
        return "wav"
    if head == b"OggS":
        return "ogg"
    if head == b"fLaC":
        return "flac"
    if head == b"\x1a\x45\xdf\xa3":
        return "webm"
    if len(data) >= 12 and data[4:8] == b"ftyp" and data[8:12] in _M4A_BRANDS:
        return "m4a"
    if data[:3] == b"ID3":
        return "mp3"
    if data[0] == 0xFF and (data[1] & 0xF0) == 0xF0:
        return "aac"
    if data[0] == 0xFF and (data[1] & 0xE0) == 0xE0:
        return "mp3"
    return None


def is_supported_audio_format(value: str) -> bool:
    return value in SUPPORTED_AUDIO_FORMATS


def audio_extension(filename: str) -> str:
    """Return the lower-cased extension of *filename* without the dot."""

    head, dot, extension = filename.rpartition(".")
    if not dot or not head or "/" in extension or "\\" in extension:
        return ""
    return extension.lower()


def check_audio_upload(filename: str, data: bytes) -> Tuple[str, Optional[str]]:
    """Validate an audio upload by extension and signature.

    Returns the extension and the detected format. An undetectable signature is
    accepted and the extension is trusted instead; a detected signature outside
    the allowlist is rejected.
    """

    extension = audio_extension(filename)
    if extension and not is_supported_audio_format(extension):
        raise UnsupportedAudioFormatError(extension)
    detected = detect_audio_format(data)
    if detected is not None and not is_supported_audio_format(detected):
        raise UnsupportedAudioFormatError(detected)
    return extension, detected


__all__ = [
    "CONTENT_TYPES",
    "FIT_OPTIONS",
    "SUPPORTED_AUDIO_FORMATS",
    "SUPPORTED_IMAGE_FORMATS",
    "UnsupportedAudioFormatError",
    "audio_extension",
    "check_audio_upload",
    "detect_audio_format",
    "is_supported_audio_format",
]
