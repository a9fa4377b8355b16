"""Tests for the Gemini REST client"""

import base64
import json
from unittest.mock import MagicMock

import pytest
import requests

from dastan.errors import ExtractionError, GenerationError
from dastan.gemini_client import GeminiClient
from dastan.utils import from_data_uri

from conftest import make_response


def candidate(part: dict) -> str:
    return json.dumps({"candidates": [{"content": {"parts": [part]}}]})


def client_with(response=None, error=None, api_key: str = "key") -> GeminiClient:
    session = MagicMock()
    session.headers = {}
    if error is not None:
        session.post.side_effect = error
    else:
        session.post.return_value = response
    return GeminiClient(api_key, session=session, timeout=5)


class TestExtractAndSplit:
    def test_returns_title_and_chapters(self) -> None:
        body = {
            "title": " باغ و بہار ",
            "chapters": [
                {"title": "Fasl 1", "text": "pehla"},
                {"title": "Fasl 2", "text": "  "},
                {"title": "Fasl 3", "text": "teesra"},
            ],
        }
        client = client_with(make_response(200, candidate({"text": json.dumps(body)})))

        result = client.extract_and_split("some literal urdu text")

        assert result.title == "باغ و بہار"
        assert [c.title for c in result.chapters] == ["Fasl 1", "Fasl 3"]
        url = client.session.post.call_args[0][0]
        payload = client.session.post.call_args[1]["json"]
        assert url.endswith("/models/gemini-2.5-flash:generateContent")
        assert payload["generationConfig"]["responseMimeType"] == "application/json"
        assert payload["contents"][0]["parts"][0] == {"text": "some literal urdu text"}
        assert client.session.headers["x-goog-api-key"] == "key"

    def test_file_input_is_sent_inline(self, tmp_path) -> None:
        pdf = tmp_path / "book.pdf"
        pdf.write_bytes(b"%PDF-1.4")
        body = {"title": "t", "chapters": [{"title": "a", "text": "b"}]}
        client = client_with(make_response(200, candidate({"text": json.dumps(body)})))

        client.extract_and_split(str(pdf))

        part = client.session.post.call_args[1]["json"]["contents"][0]["parts"][0]
        assert part["inlineData"]["mimeType"] == "application/pdf"
        assert base64.b64decode(part["inlineData"]["data"]) == b"%PDF-1.4"

    @pytest.mark.parametrize(
        "response",
        [
            make_response(500, "{}"),
            make_response(200, candidate({"text": "not json"})),
            make_response(200, candidate({"text": json.dumps({"title": "t", "chapters": []})})),
            make_response(200, json.dumps({"candidates": []})),
        ],
    )
    def test_failures_are_extraction_errors(self, response) -> None:
        with pytest.raises(ExtractionError):
            client_with(response).extract_and_split("text")

    def test_empty_input(self) -> None:
        with pytest.raises(ExtractionError):
            client_with(make_response(200, "{}")).extract_and_split("   ")

    def test_missing_api_key(self) -> None:
        with pytest.raises(ExtractionError):
            client_with(make_response(200, "{}"), api_key="").extract_and_split("text")


class TestSynthesize:
    def test_wraps_pcm_in_wav_data_uri(self) -> None:
        pcm = b"\x01\x00" * 48000
        part = {"inlineData": {"mimeType": "audio/L16;codec=pcm;rate=24000", "data": base64.b64encode(pcm).decode()}}
        client = client_with(make_response(200, candidate(part)))

        result = client.synthesize("kahani", "Kore")

        assert result.audio_url.startswith("data:audio/wav;base64,")
        assert result.duration == 2.0
        wav = from_data_uri(result.audio_url)
        assert wav[:4] == b"RIFF" and wav.endswith(pcm)
        payload = client.session.post.call_args[1]["json"]
        voice = payload["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]
        assert voice == {"voiceName": "Kore"}

    def test_network_error_is_generation_error(self) -> None:
        client = client_with(error=requests.exceptions.ConnectionError("down"))
        with pytest.raises(GenerationError):
            client.synthesize("kahani", "Kore")

    def test_no_audio_is_generation_error(self) -> None:
        client = client_with(make_response(200, candidate({"inlineData": {}})))
        with pytest.raises(GenerationError):
            client.synthesize("kahani", "Kore")

    def test_empty_text(self) -> None:
        with pytest.raises(GenerationError):
            client_with(make_response(200, "{}")).synthesize("", "Kore")
