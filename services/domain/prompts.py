"""Provider prompt for a reel's voiceover video."""

import math

from .models import Reel

MAX_PROMPT_LENGTH = 1000

# Normal speaking pace
WORDS_PER_SECOND = 2.2
CHARS_PER_SECOND = 14


def max_words_for(duration_seconds: int) -> int:
    if duration_seconds <= 0:
        return 0
    return max(10, math.floor(duration_seconds * WORDS_PER_SECOND))


def max_characters_for(duration_seconds: int) -> int:
    if duration_seconds <= 0:
        return 0
    return max(60, math.floor(duration_seconds * CHARS_PER_SECOND))


def build_video_prompt(reel: Reel, duration_seconds: int = 15) -> str:
    """Voiceover prompt from the reel's topic and script, capped at MAX_PROMPT_LENGTH."""
    lines = [
        "Create a voiceover video.",
        "",
        "STRICT RULES:",
        f"- Maximum duration: {duration_seconds} seconds",
        f"- Maximum words: {max_words_for(duration_seconds)}",
        f"- Maximum characters (including spaces): {max_characters_for(duration_seconds)}",
        "- Do NOT exceed any limit. Shorten aggressively if needed.",
        "",
        f"Topic: {reel.topic}",
    ]
    if reel.script:
        lines.append(f"Script: {reel.script.strip()}")
    lines += [
        "",
        "The voiceover must feel natural at normal speaking speed (150 WPM).",
        "Match video pacing to the voiceover timing. Avoid fast cuts.",
    ]

    prompt = "\n".join(lines).strip()
    if len(prompt) <= MAX_PROMPT_LENGTH:
        return prompt
    return prompt[: MAX_PROMPT_LENGTH - 3] + "..."
