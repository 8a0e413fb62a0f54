"""Neural voice catalogue: voice names, quality levels and voice ids."""

import logging

from focused_reader.constants import DEFAULT_QUALITY, DEFAULT_VOICE

logger = logging.getLogger(__name__)

# Hardcoded English voices and the qualities offered for each (avoids network call at startup)
VOICE_QUALITIES = {
    "en-US-AriaNeural": ["low", "medium", "high"],
    "en-US-GuyNeural": ["low", "medium", "high"],
    "en-US-JennyNeural": ["low", "medium"],
    "en-US-DavisNeural": ["medium"],
    "en-GB-SoniaNeural": ["medium", "high"],
    "en-GB-RyanNeural": ["low", "medium"],
    "en-AU-NatashaNeural": ["medium"],
    "en-IE-EmilyNeural": ["medium"],
}

# Sample rate of the WAV returned by the worker for each quality
QUALITY_SAMPLE_RATES = {
    "low": 16000,
    "medium": 22050,
    "high": 24000,
}


def voice_qualities(name: str) -> list[str]:
    return VOICE_QUALITIES.get(name, [DEFAULT_QUALITY])


def resolve_quality(name: str, quality: str) -> str:
    """Keep ``quality`` if the voice offers it, else pick the best available."""
    qualities = voice_qualities(name)
    if quality in qualities:
        return quality
    fallback = qualities[-1]
    logger.info("Voice %s has no %s quality, using %s", name, quality, fallback)
    return fallback


def voice_id(name: str, quality: str) -> str:
    return f"{name}-{quality}"


def parse_voice_id(value: str) -> tuple[str, str]:
    """Split "<name>-<quality>" back into its parts.

    Raises ValueError for an unknown quality suffix.
    """
    name, _, quality = value.rpartition("-")
    if not name or quality not in QUALITY_SAMPLE_RATES:
        raise ValueError(f"Invalid voice id: {value!r}")
    return name, quality


def default_voice() -> tuple[str, str]:
    return DEFAULT_VOICE, resolve_quality(DEFAULT_VOICE, DEFAULT_QUALITY)
