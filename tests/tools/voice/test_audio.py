from __future__ import annotations

import pytest

from bolso.tools.voice.audio import (
    DEFAULT_AUDIO_MIME,
    audio_format_for,
    parse_audio_input,
)


def test_raw_base64_defaults_to_webm() -> None:
    # act
    payload = parse_audio_input("GkXfo59ChoEBQveBAULygQRC")

    # assert
    assert payload.base64 == "GkXfo59ChoEBQveBAULygQRC"
    assert payload.mime_type == DEFAULT_AUDIO_MIME
    assert payload.format == "webm"


def test_data_url_with_parameters() -> None:
    """Parameters between the MIME type and ``;base64`` are ignored."""
    # act
    payload = parse_audio_input("data:audio/ogg;codecs=opus;base64,T2dnUw==")

    # assert
    assert payload.mime_type == "audio/ogg"
    assert payload.format == "ogg"
    assert payload.base64 == "T2dnUw=="


def test_whitespace_inside_payload_is_removed() -> None:
    # act
    payload = parse_audio_input("  data:audio/wav;base64,UklG\nRg ==\n")

    # assert
    assert payload.base64 == "UklGRg=="
    assert payload.format == "wav"


@pytest.mark.parametrize(
    ("mime_type", "expected"),
    [
        ("audio/webm;codecs=opus", "webm"),
        ("audio/x-wav", "wav"),
        ("audio/mpeg", "mp3"),
        ("audio/mp3", "mp3"),
        ("audio/OGG", "ogg"),
        ("audio/mp4", "webm"),
    ],
)
def test_audio_format_for(mime_type: str, expected: str) -> None:
    # act
    output = audio_format_for(mime_type)

    # assert
    assert output == expected


def test_empty_input_gives_empty_payload() -> None:
    # act
    payload = parse_audio_input(None)

    # assert
    assert payload.base64 == ""
