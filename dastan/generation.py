"""
Generation Cache - lazily narrates chapters, at most one generation at a time
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from dastan.errors import GenerationError, GenerationInProgressError
from dastan.models import Chapter, ProcessingStatus, find_book
from dastan.mutations import AttachAudio, MutationApplier
from dastan.sync_engine import SyncEngine
from dastan.voices import VoiceOption

ChapterKey = Tuple[str, str]


class ChapterStatus(str, Enum):
    NOT_GENERATED = "not_generated"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


class ProcessingState:
    """The single, process-wide processing status shown to the user"""

    def __init__(self) -> None:
        self.status = ProcessingStatus.IDLE
        self.active_chapter: Optional[ChapterKey] = None
        self.failed_chapter: Optional[ChapterKey] = None
        self.logger = logging.getLogger(__name__)

    @property
    def is_busy(self) -> bool:
        return self.status.is_busy

    def transition(self, status: ProcessingStatus, chapter: Optional[ChapterKey] = None) -> None:
        self.logger.debug(f"Processing status {self.status.value} -> {status.value}")
        self.status = status
        if status == ProcessingStatus.GENERATING_AUDIO:
            self.active_chapter = chapter
            self.failed_chapter = None
        elif status == ProcessingStatus.ERROR:
            self.failed_chapter = chapter
            self.active_chapter = None
        else:
            self.active_chapter = None


class GenerationCache:
    """
    Fills chapter audio references through the synthesis service

    A chapter that already has an audio reference is returned without any
    service call. Only one generation may run at a time; a second request
    while one is outstanding is rejected with GenerationInProgressError.
    """

    def __init__(
        self,
        engine: SyncEngine,
        applier: MutationApplier,
        synthesizer: Any,
        processing: Optional[ProcessingState] = None,
        timeout: float = 180.0,
    ) -> None:
        self.engine = engine
        self.applier = applier
        self.synthesizer = synthesizer
        self.processing = processing or ProcessingState()
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)
        # Synthesis call that may outlive a timed-out generate()
        self._worker: Optional["asyncio.Future[Any]"] = None

    @property
    def worker_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def _start_worker(self, text: str, voice: VoiceOption) -> "asyncio.Future[Any]":
        worker = asyncio.ensure_future(asyncio.to_thread(self.synthesizer.synthesize, text, voice.model_voice))
        worker.add_done_callback(_discard_result)
        self._worker = worker
        return worker

    def _fail(self, key: ChapterKey, title: str, message: str) -> None:
        self.processing.transition(ProcessingStatus.ERROR, key)
        self.logger.error(f"Audio generation for '{title}' failed: {message}")

    def _current_chapter(self, book_id: str, chapter_id: str) -> Optional[Chapter]:
        book = find_book(self.engine.library, book_id)
        return book.find_chapter(chapter_id) if book else None

    def chapter_status(self, book_id: str, chapter_id: str) -> ChapterStatus:
        key = (book_id, chapter_id)
        current = self._current_chapter(book_id, chapter_id)
        if current and current.has_audio:
            return ChapterStatus.READY
        if self.processing.status == ProcessingStatus.GENERATING_AUDIO and self.processing.active_chapter == key:
            return ChapterStatus.GENERATING
        if self.processing.failed_chapter == key:
            return ChapterStatus.FAILED
        return ChapterStatus.NOT_GENERATED

    async def generate(self, book_id: str, chapter: Chapter, voice: VoiceOption) -> str:
        """
        Return the chapter's audio reference, generating it if needed

        Raises:
            GenerationInProgressError: another generation is outstanding
            GenerationError: the service failed; nothing is stored
        """
        if chapter.has_audio:
            return chapter.audio_url  # type: ignore[return-value]

        current = self._current_chapter(book_id, chapter.id)
        if current and current.has_audio:
            return current.audio_url  # type: ignore[return-value]

        if self.processing.is_busy:
            raise GenerationInProgressError(
                f"Cannot generate '{chapter.title}' while status is {self.processing.status.value}"
            )
        if self.worker_running:
            raise GenerationInProgressError(
                f"Cannot generate '{chapter.title}' until the previous synthesis call returns"
            )

        key = (book_id, chapter.id)
        self.processing.transition(ProcessingStatus.GENERATING_AUDIO, key)
        text = current.text if current else chapter.text

        try:
            worker = self._start_worker(text, voice)
            # Shielded so a timeout leaves the worker tracked until it returns
            result = await asyncio.wait_for(asyncio.shield(worker), timeout=self.timeout)
            if not result or not result.audio_url:
                raise GenerationError("Synthesis returned no audio reference")
        except asyncio.TimeoutError as e:
            self._fail(key, chapter.title, f"timed out after {self.timeout:g}s")
            raise GenerationError(f"Audio generation timed out after {self.timeout:g}s") from e
        except GenerationError as e:
            self._fail(key, chapter.title, str(e))
            raise
        except asyncio.CancelledError:
            self._fail(key, chapter.title, "cancelled")
            raise
        except Exception as e:
            self._fail(key, chapter.title, f"{type(e).__name__}: {str(e)}")
            raise GenerationError(f"Audio generation failed: {str(e)}") from e

        self.applier.apply(AttachAudio(book_id, chapter.id, result.audio_url, result.duration))
        self.processing.transition(ProcessingStatus.IDLE)
        self.logger.info(f"Audio ready for '{chapter.title}'")
        return result.audio_url

    async def generate_book(
        self,
        book_id: str,
        voice: VoiceOption,
        on_progress: Optional[Callable[[Chapter], None]] = None,
    ) -> Dict[str, Any]:
        """Generate every chapter of a book that has no audio yet, one at a time"""
        book = find_book(self.engine.library, book_id)
        if book is None:
            raise KeyError(f"Book not found: {book_id}")

        result: Dict[str, Any] = {"generated": 0, "cached": 0, "errors": []}
        errors: List[str] = result["errors"]

        for chapter in book.chapters:
            if chapter.has_audio:
                result["cached"] += 1
            else:
                try:
                    await self.generate(book_id, chapter, voice)
                    result["generated"] += 1
                except GenerationError as e:
                    errors.append(f"{chapter.title}: {str(e)}")
            if on_progress:
                on_progress(chapter)

        return result


def _discard_result(worker: "asyncio.Future[Any]") -> None:
    # Marks a late failure as retrieved; generate() already reported it
    if not worker.cancelled():
        worker.exception()
