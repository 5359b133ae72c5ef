"""Voice command pipeline: transcription, extraction and persistence."""

from bolso.tools.voice.audio import parse_audio_input
from bolso.tools.voice.extraction import (
    DeleteCommand,
    ExtractedTransaction,
    ExtractionFailure,
    ExtractionPolicy,
    ExtractionResult,
    decode_extraction,
    strip_code_fence,
)
from bolso.tools.voice.pipeline import ProcessVoiceTool, VoicePipeline, VoiceResult

__all__ = [
    "DeleteCommand",
    "ExtractedTransaction",
    "ExtractionFailure",
    "ExtractionPolicy",
    "ExtractionResult",
    "ProcessVoiceTool",
    "VoicePipeline",
    "VoiceResult",
    "decode_extraction",
    "parse_audio_input",
    "strip_code_fence",
]
