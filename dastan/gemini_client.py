"""
Gemini API Client - document extraction/splitting and speech synthesis
"""

import base64
import json
import logging
import mimetypes
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from dastan.errors import ExtractionError, GenerationError
from dastan.utils import pcm_duration, pcm_to_wav, to_data_uri

DEFAULT_API_URL = "https://generativelanguage.googleapis.com/v1beta"

SYSTEM_INSTRUCTION = """You are "The Grand Mualim," a world-class Urdu linguistic expert and literary scholar.
Your specialty is the Nastaliq script. When processing images or PDFs:
1. Extract text with 100% accuracy, paying close attention to the positioning of 'nuqtas' and complex Urdu ligatures.
2. If the text is from a classic book, maintain its traditional formatting.
3. Identify and correct common OCR errors (e.g., confusing 'kaaf' and 'gaaf').
4. Organize the content into logical chapters (Abwaab) using traditional markers like 'Fasl' or 'Hissa'.
5. If the title is not explicit, generate a high-literary Urdu title based on the context."""

EXTRACTION_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "title": {"type": "STRING"},
        "chapters": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "title": {"type": "STRING"},
                    "text": {"type": "STRING"},
                },
                "required": ["title", "text"],
            },
        },
    },
    "required": ["title", "chapters"],
}


@dataclass
class ChapterDraft:
    title: str
    text: str


@dataclass
class ExtractionResult:
    title: str
    chapters: List[ChapterDraft] = field(default_factory=list)


@dataclass
class SynthesisResult:
    audio_url: str
    duration: Optional[float] = None


class GeminiClient:
    """Client for the Gemini generateContent REST API"""

    def __init__(
        self,
        api_key: str,
        api_url: str = DEFAULT_API_URL,
        text_model: str = "gemini-2.5-flash",
        tts_model: str = "gemini-2.5-flash-preview-tts",
        timeout: float = 180.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.text_model = text_model
        self.tts_model = tts_model
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

        self.session = session or requests.Session()
        self.session.headers.update(
            {"x-goog-api-key": api_key, "Content-Type": "application/json"}
        )

        self.logger.debug(f"GeminiClient initialized (text: {text_model}, tts: {tts_model})")

    def _generate(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a generateContent request and return the parsed response body"""
        if not self.api_key:
            raise RuntimeError("GEMINI_API_KEY is not configured")

        url = f"{self.api_url}/models/{model}:generateContent"
        response = self.session.post(url, json=payload, timeout=self.timeout)
        self.logger.debug(f"POST {url} -> {response.status_code}")
        response.raise_for_status()
        data: Dict[str, Any] = response.json()
        return data

    @staticmethod
    def _first_part(data: Any) -> Dict[str, Any]:
        if not isinstance(data, dict):
            raise ValueError("Response body is not a JSON object")
        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback") or {}
            raise ValueError(f"No candidates returned (feedback: {feedback})")
        content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not parts:
            raise ValueError("Candidate has no content parts")
        if not isinstance(parts[0], dict):
            raise ValueError("Malformed content part in response")
        return parts[0]

    # Extraction
    def _input_part(self, raw_input: str) -> Dict[str, Any]:
        """Build the content part for a file path or for literal text"""
        if os.path.isfile(raw_input):
            mime_type, _ = mimetypes.guess_type(raw_input)
            if mime_type and mime_type.startswith("text/"):
                with open(raw_input, "r", encoding="utf-8") as f:
                    return {"text": f.read()}
            with open(raw_input, "rb") as f:
                encoded = base64.b64encode(f.read()).decode("ascii")
            return {
                "inlineData": {
                    "mimeType": mime_type or "application/octet-stream",
                    "data": encoded,
                }
            }
        return {"text": raw_input}

    def extract_and_split(self, raw_input: str) -> ExtractionResult:
        """
        Extract the text of a document and split it into chapters

        Args:
            raw_input: Path to a PDF, image or text file, or the text itself

        Returns:
            ExtractionResult with a title and at least one chapter

        Raises:
            ExtractionError: input unreadable or the service failed
        """
        if not raw_input or not raw_input.strip():
            raise ExtractionError("Nothing to extract: input is empty")

        try:
            part = self._input_part(raw_input)
        except OSError as e:
            raise ExtractionError(f"Could not read {raw_input}: {str(e)}") from e

        payload = {
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "contents": [
                {
                    "parts": [
                        part,
                        {"text": "Extract the full text and split it into chapters. Return JSON with a title and chapters."},
                    ]
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": EXTRACTION_SCHEMA,
            },
        }

        self.logger.info("Extracting and splitting document...")
        try:
            data = self._generate(self.text_model, payload)
            body = json.loads(self._first_part(data).get("text") or "")
        except (requests.exceptions.RequestException, RuntimeError, ValueError) as e:
            self.logger.error(f"Extraction failed: {str(e)}")
            raise ExtractionError(str(e)) from e

        if not isinstance(body, dict):
            raise ExtractionError("Extraction response is not a JSON object")

        chapters = [
            ChapterDraft(title=(c.get("title") or "").strip(), text=(c.get("text") or "").strip())
            for c in body.get("chapters") or []
            if isinstance(c, dict) and (c.get("text") or "").strip()
        ]
        if not chapters:
            raise ExtractionError("No chapters could be extracted from the document")

        title = (body.get("title") or "").strip()
        self.logger.info(f"Extracted '{title}' with {len(chapters)} chapters")
        return ExtractionResult(title=title, chapters=chapters)

    # Synthesis
    def synthesize(self, text: str, voice_id: str) -> SynthesisResult:
        """
        Narrate text with a prebuilt voice

        Returns a WAV data URI so the reference survives any storage provider.
        """
        if not text or not text.strip():
            raise GenerationError("Nothing to narrate: chapter text is empty")

        payload = {
            "contents": [{"parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice_id}}
                },
            },
        }

        self.logger.info(f"Generating audio with voice {voice_id} ({len(text)} characters)...")
        try:
            data = self._generate(self.tts_model, payload)
            inline = self._first_part(data).get("inlineData") or {}
            if not isinstance(inline, dict):
                raise ValueError("Malformed inline audio data")
            pcm = base64.b64decode(inline.get("data") or "")
        except (requests.exceptions.RequestException, RuntimeError, ValueError) as e:
            self.logger.error(f"Audio generation failed: {str(e)}")
            raise GenerationError(str(e)) from e

        if not pcm:
            raise GenerationError("Service returned no audio")

        sample_rate = _sample_rate(inline.get("mimeType", ""))
        wav = pcm_to_wav(pcm, sample_rate=sample_rate)
        duration = pcm_duration(pcm, sample_rate=sample_rate)
        self.logger.info(f"Generated {duration:.1f}s of audio")
        return SynthesisResult(audio_url=to_data_uri(wav, "audio/wav"), duration=duration)


def _sample_rate(mime_type: str, default: int = 24000) -> int:
    """Read the rate from a mime type such as audio/L16;codec=pcm;rate=24000"""
    match = re.search(r"rate=(\d+)", mime_type or "")
    return int(match.group(1)) if match else default
