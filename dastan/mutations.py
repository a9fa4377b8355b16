"""
Local mutations - pure library transforms plus the applier that publishes them
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Optional, Set, Union

from dastan.models import Book, Library
from dastan.sync_engine import PushOutcome, SyncEngine


@dataclass(frozen=True)
class AddBook:
    book: Book


@dataclass(frozen=True)
class DeleteBook:
    book_id: str


@dataclass(frozen=True)
class AttachAudio:
    book_id: str
    chapter_id: str
    audio_url: str
    duration: Optional[float] = None


MutationIntent = Union[AddBook, DeleteBook, AttachAudio]


def apply_mutation(books: Library, intent: MutationIntent) -> Library:
    """
    Return a new library with the intent applied; the input is not modified

    AttachAudio locates book and chapter by id. If either no longer exists
    (for example a pull removed it) the library is returned unchanged.
    """
    if isinstance(intent, AddBook):
        return [intent.book] + list(books)

    if isinstance(intent, DeleteBook):
        return [book for book in books if book.id != intent.book_id]

    if isinstance(intent, AttachAudio):
        updated = []
        for book in books:
            if book.id == intent.book_id and book.find_chapter(intent.chapter_id):
                chapters = tuple(
                    c.with_audio(intent.audio_url, intent.duration) if c.id == intent.chapter_id else c
                    for c in book.chapters
                )
                book = replace(book, chapters=chapters)
            updated.append(book)
        return updated

    raise TypeError(f"Unknown mutation intent: {type(intent).__name__}")


class MutationApplier:
    """Applies user mutations to the engine's library and pushes the result"""

    def __init__(self, engine: SyncEngine) -> None:
        self.engine = engine
        self.logger = logging.getLogger(__name__)
        self.selected_book_id: Optional[str] = None
        self._pending: Set["asyncio.Task[PushOutcome]"] = set()

    def apply(self, intent: MutationIntent) -> "asyncio.Task[PushOutcome]":
        """
        Apply the intent locally, then start a background push

        Must be called from a running event loop. The local change is final;
        the returned task resolves to the push outcome and never raises for
        provider failures.
        """
        new_library = apply_mutation(self.engine.library, intent)
        self.engine.set_library(new_library)

        if isinstance(intent, DeleteBook) and self.selected_book_id == intent.book_id:
            self.selected_book_id = None

        self.logger.info(f"Applied {type(intent).__name__}, library has {len(new_library)} books")

        task = asyncio.get_running_loop().create_task(self.engine.push(new_library))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def flush(self) -> None:
        """Wait for all outstanding pushes"""
        if self._pending:
            await asyncio.gather(*list(self._pending))
