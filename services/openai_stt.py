# services/openai_stt.py
from __future__ import annotations

import logging
from pathlib import Path

from openai import AsyncOpenAI
from api.app.config import get_settings

logger = logging.getLogger(__name__)

MIN_AUDIO_BYTES = 1024


class NonRetryableJobError(Exception):
    """
    Input is permanently invalid. The job engine does not special-case it:
    it still consumes attempts like any other failure, the type just makes
    the cause obvious in the stored error.
    """


def _validate_audio_file(path: Path) -> None:
    if not path.exists():
        raise NonRetryableJobError(f"Audio file does not exist: {path}")

    size = path.stat().st_size
    if size < MIN_AUDIO_BYTES:  # way too small to be real audio
        raise NonRetryableJobError(
            f"Audio file too small ({size} bytes). Likely not real audio."
        )

    head = path.read_bytes()[:16]

    # Validate WAV container if extension says .wav
    if path.suffix.lower() == ".wav":
        if not (head.startswith(b"RIFF") and b"WAVE" in head[:16]):
            raise NonRetryableJobError(
                f"Invalid WAV container. Header={head!r}"
            )


async def transcribe_audio(audio_path: str | Path, language: str | None = None) -> str:
    settings = get_settings()
    path = Path(audio_path)

    logger.info("STT: transcribing %s", path)

    # Validate before sending to OpenAI
    _validate_audio_file(path)

    client = AsyncOpenAI(api_key=settings.openai_api_key)
    kwargs = {"language": language} if language else {}

    with path.open("rb") as f:
        response = await client.audio.transcriptions.create(
            model=settings.openai_stt_model,
            file=f,
            response_format="text",
            **kwargs,
        )

    transcript = response.strip()
    logger.info("STT: got %d chars", len(transcript))
    return transcript
