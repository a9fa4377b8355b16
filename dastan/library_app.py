"""
Library App - wires the sync engine, mutations and generation cache together
"""

import asyncio
import logging
from typing import Any, Optional

from dastan.config import Config
from dastan.errors import ExtractionError
from dastan.generation import GenerationCache, ProcessingState
from dastan.local_store import LocalStore
from dastan.models import Book, Chapter, ProcessingStatus, find_book
from dastan.mutations import AddBook, DeleteBook, MutationApplier
from dastan.sync_engine import PullResult, PushOutcome, SyncEngine
from dastan.sync_state import ProviderKind
from dastan.utils import chapter_id_for, new_book_id, now_ms
from dastan.voices import DEFAULT_VOICE, VoiceOption, get_voice

KEY_SELECTED_VOICE = "selected_voice"


class LibraryApp:
    """User-facing operations over the synchronized library"""

    def __init__(
        self,
        config: Config,
        store: LocalStore,
        extractor: Any,
        synthesizer: Any,
        engine: Optional[SyncEngine] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.extractor = extractor
        self.logger = logging.getLogger(__name__)

        self.engine = engine or SyncEngine(config, store)
        self.applier = MutationApplier(self.engine)
        self.processing = ProcessingState()
        self.generation = GenerationCache(
            self.engine,
            self.applier,
            synthesizer,
            processing=self.processing,
            timeout=config.generation_timeout,
        )
        self.active_chapter: Optional[Chapter] = None
        self.active_book_id: Optional[str] = None
        self.selected_voice: VoiceOption = get_voice(store.get_setting(KEY_SELECTED_VOICE)) or DEFAULT_VOICE

    @property
    def books(self):
        return self.engine.library

    @property
    def status(self) -> ProcessingStatus:
        return self.processing.status

    @property
    def selected_book(self) -> Optional[Book]:
        if self.applier.selected_book_id is None:
            return None
        return find_book(self.engine.library, self.applier.selected_book_id)

    def select_book(self, book_id: Optional[str]) -> Optional[Book]:
        book = find_book(self.engine.library, book_id) if book_id else None
        self.applier.selected_book_id = book.id if book else None
        return book

    def select_voice(self, voice_id: str) -> VoiceOption:
        voice = get_voice(voice_id)
        if voice is None:
            raise KeyError(f"Unknown voice: {voice_id}")
        self.selected_voice = voice
        self.store.set_setting(KEY_SELECTED_VOICE, voice.id)
        return voice

    async def refresh(self) -> PullResult:
        return await self.engine.pull()

    async def reconfigure(
        self,
        provider: ProviderKind,
        room_id: Optional[str] = None,
        token: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> PullResult:
        return await self.engine.reconfigure(provider, room_id, token, resource_id)

    async def upload(self, raw_input: str, custom_title: Optional[str] = None) -> "asyncio.Task[PushOutcome]":
        """
        Extract a document, add it as a new book and start pushing the library

        Raises ExtractionError; no book is added in that case.
        """
        if self.processing.is_busy:
            raise ExtractionError(f"Cannot upload while status is {self.processing.status.value}")

        self.processing.transition(ProcessingStatus.EXTRACTING)
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self.extractor.extract_and_split, raw_input),
                timeout=self.config.extraction_timeout,
            )
        except asyncio.TimeoutError as e:
            self.processing.transition(ProcessingStatus.ERROR)
            raise ExtractionError(
                f"Extraction timed out after {self.config.extraction_timeout:g}s"
            ) from e
        except (ExtractionError, asyncio.CancelledError):
            self.processing.transition(ProcessingStatus.ERROR)
            raise
        except Exception as e:
            self.processing.transition(ProcessingStatus.ERROR)
            self.logger.error(f"Extraction failed: {type(e).__name__}: {str(e)}")
            raise ExtractionError(f"Extraction failed: {str(e)}") from e

        if not result or not result.chapters:
            self.processing.transition(ProcessingStatus.ERROR)
            raise ExtractionError("Extraction returned no chapters")

        book_id = new_book_id()
        book = Book(
            id=book_id,
            title=custom_title or result.title or self.config.library["default_title"],
            author=self.config.library["default_author"],
            chapters=tuple(
                Chapter(id=chapter_id_for(book_id, i), title=draft.title, text=draft.text)
                for i, draft in enumerate(result.chapters)
            ),
            created_at=now_ms(),
        )

        push = self.applier.apply(AddBook(book))
        self.processing.transition(ProcessingStatus.IDLE)
        self.logger.info(f"Added '{book.title}' with {len(book.chapters)} chapters")
        return push

    def delete_book(self, book_id: str) -> "asyncio.Task[PushOutcome]":
        if self.active_book_id == book_id:
            self.active_chapter = None
            self.active_book_id = None
        return self.applier.apply(DeleteBook(book_id))

    async def play_chapter(self, book_id: str, chapter_id: str) -> Chapter:
        """Make a chapter active, generating its audio first if needed"""
        book = find_book(self.engine.library, book_id)
        chapter = book.find_chapter(chapter_id) if book else None
        if chapter is None:
            raise KeyError(f"Chapter not found: {book_id}/{chapter_id}")

        if not chapter.has_audio:
            await self.generation.generate(book_id, chapter, self.selected_voice)
            book = find_book(self.engine.library, book_id)
            chapter = (book.find_chapter(chapter_id) if book else None) or chapter

        self.active_chapter = chapter
        self.active_book_id = book_id
        return chapter

    async def close(self) -> None:
        """Wait for background pushes before the loop shuts down"""
        await self.applier.flush()
