"""
Narration voice catalog
"""

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class VoiceOption:
    id: str
    name: str
    description: str
    model_voice: str


URDU_VOICES: List[VoiceOption] = [
    VoiceOption(
        "1",
        "Master (Mualim)",
        "Deep, authoritative voice of a veteran Urdu scholar. Perfect for classics.",
        "Kore",
    ),
    VoiceOption(
        "2",
        "Storyteller (Dastango)",
        "Energetic and expressive narration for fiction and folk tales.",
        "Puck",
    ),
    VoiceOption(
        "3",
        "Teacher (Ustad)",
        "Calm and precise, ideal for educational and instructional texts.",
        "Charon",
    ),
    VoiceOption(
        "4",
        "Gentle (Nawa)",
        "Soft and rhythmic, perfect for Ghazals and delicate poetry.",
        "Fenrir",
    ),
    VoiceOption(
        "5",
        "Philosopher (Hakeem)",
        "Thoughtful and slow-paced narration for deep intellectual works.",
        "Zephyr",
    ),
]

DEFAULT_VOICE = URDU_VOICES[0]


def get_voice(voice_id: Optional[str]) -> Optional[VoiceOption]:
    """Look up a voice by catalog id or by provider voice name"""
    if not voice_id:
        return None
    for voice in URDU_VOICES:
        if voice.id == voice_id or voice.model_voice.lower() == voice_id.lower():
            return voice
    return None
