from __future__ import annotations

import re

from bolso.infra.clients.gateway import AudioPayload

# Browsers record as webm/opus.
DEFAULT_AUDIO_MIME = "audio/webm;codecs=opus"
DEFAULT_AUDIO_FORMAT = "webm"

_DATA_URL = re.compile(
    r"^data:([^;]+)(?:;[^,]*)?;base64,(.+)$", re.IGNORECASE | re.DOTALL
)
_WHITESPACE = re.compile(r"\s")

# First matching fragment wins.
_FORMAT_FRAGMENTS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("webm",), "webm"),
    (("wav",), "wav"),
    (("mpeg", "mp3"), "mp3"),
    (("ogg",), "ogg"),
)


def audio_format_for(mime_type: str) -> str:
    lower = mime_type.lower()
    for fragments, audio_format in _FORMAT_FRAGMENTS:
        if any(fragment in lower for fragment in fragments):
            return audio_format
    return DEFAULT_AUDIO_FORMAT


def parse_audio_input(raw: str | None) -> AudioPayload:
    """Accept raw base64 or a ``data:<mime>[;params];base64,<data>`` URL.

    Whitespace inside the payload is removed. Raw base64 is assumed to be
    webm/opus.
    """
    trimmed = (raw or "").strip()
    mime_type = DEFAULT_AUDIO_MIME
    data = trimmed

    match = _DATA_URL.match(trimmed)
    if match:
        mime_type, data = match.group(1), match.group(2)

    return AudioPayload(
        base64=_WHITESPACE.sub("", data),
        mime_type=mime_type,
        format=audio_format_for(mime_type),
    )
