"""Shared fixtures and fakes for the sync tool tests"""

import threading
from typing import Dict, List, Optional, Tuple

import pytest
import requests

from dastan.config import Config
from dastan.gemini_client import ExtractionResult, SynthesisResult
from dastan.local_store import LocalStore
from dastan.models import Book, Chapter
from dastan.providers import NoneProvider, StorageProvider
from dastan.sync_engine import SyncEngine
from dastan.sync_state import ProviderKind, SyncState


def make_book(book_id: str, chapters: int = 2, audio: bool = False) -> Book:
    return Book(
        id=book_id,
        title=f"Book {book_id}",
        author="Urdu Scholar",
        chapters=tuple(
            Chapter(
                id=f"{book_id}-{i}",
                title=f"Fasl {i}",
                text=f"Text of chapter {i} in {book_id}",
                audio_url="data:audio/wav;base64,AAAA" if audio else None,
                duration=1.5 if audio else None,
            )
            for i in range(chapters)
        ),
        created_at=1700000000000,
    )


def make_response(status_code: int, body: Optional[str] = None, url: str = "http://test", headers=None) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response._content = (body or "").encode("utf-8")
    response.url = url
    response.headers.update(headers or {})
    return response


class FakeProvider(StorageProvider):
    """In-memory provider; an optional gate blocks pull until released"""

    def __init__(self, kind: ProviderKind, books: Optional[List[Book]] = None) -> None:
        super().__init__()
        self.kind = kind
        self.books = books
        self.pull_error: Optional[Exception] = None
        self.push_error: Optional[Exception] = None
        self.pull_gate: Optional[threading.Event] = None
        self.push_gate: Optional[threading.Event] = None
        self.pull_calls = 0
        self.pushed: List[List[Book]] = []

    def pull(self):
        self.pull_calls += 1
        if self.pull_gate is not None:
            self.pull_gate.wait(5)
        if self.pull_error is not None:
            raise self.pull_error
        return None if self.books is None else list(self.books)

    def push(self, books):
        if self.push_gate is not None:
            self.push_gate.wait(5)
        if self.push_error is not None:
            raise self.push_error
        self.pushed.append(list(books))
        self.books = list(books)


class ProviderRegistry:
    """Provider factory handing out one FakeProvider per routing target"""

    def __init__(self) -> None:
        self.providers: Dict[Tuple[ProviderKind, Optional[str]], FakeProvider] = {}

    def get(self, kind: ProviderKind, target: Optional[str]) -> FakeProvider:
        return self.providers.setdefault((kind, target), FakeProvider(kind))

    def __call__(self, state: SyncState, settings) -> StorageProvider:
        if state.provider == ProviderKind.NONE:
            return NoneProvider()
        target = state.room_id if state.provider == ProviderKind.PUBLIC else state.resource_id
        return self.get(state.provider, target)


class FakeSynthesizer:
    def __init__(self, error: Optional[Exception] = None, gate: Optional[threading.Event] = None) -> None:
        self.error = error
        self.gate = gate
        self.calls: List[Tuple[str, str]] = []

    def synthesize(self, text: str, voice_id: str) -> SynthesisResult:
        self.calls.append((text, voice_id))
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return SynthesisResult(audio_url=f"data:audio/wav;base64,{len(self.calls)}", duration=12.5)


class FakeExtractor:
    def __init__(self, result: Optional[ExtractionResult] = None, error: Optional[Exception] = None) -> None:
        self.result = result
        self.error = error
        self.calls: List[str] = []

    def extract_and_split(self, raw_input: str) -> ExtractionResult:
        self.calls.append(raw_input)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def config() -> Config:
    return Config(config_path=None, secrets_path="")


@pytest.fixture
def store(tmp_path) -> LocalStore:
    return LocalStore(str(tmp_path / "state.db"))


@pytest.fixture
def registry() -> ProviderRegistry:
    return ProviderRegistry()


@pytest.fixture
def engine(config, store, registry) -> SyncEngine:
    return SyncEngine(config, store, provider_factory=registry)


@pytest.fixture
def room_provider(config, registry) -> FakeProvider:
    """The provider behind the default public room"""
    return registry.get(ProviderKind.PUBLIC, config.default_room)
