"""
Data models for the library and its snapshot wire format
"""

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from dastan.errors import SnapshotFormatError


class ProcessingStatus(str, Enum):
    """Global processing status shared by extraction and generation"""

    IDLE = "IDLE"
    EXTRACTING = "EXTRACTING"
    SPLITTING = "SPLITTING"
    GENERATING_AUDIO = "GENERATING_AUDIO"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"

    @property
    def is_busy(self) -> bool:
        return self in (
            ProcessingStatus.EXTRACTING,
            ProcessingStatus.SPLITTING,
            ProcessingStatus.GENERATING_AUDIO,
        )


@dataclass(frozen=True)
class Chapter:
    """A chapter of a book; audio_url is filled once generation succeeds"""

    id: str
    title: str
    text: str
    audio_url: Optional[str] = None
    duration: Optional[float] = None

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_url)

    def with_audio(self, audio_url: str, duration: Optional[float] = None) -> "Chapter":
        return replace(
            self,
            audio_url=audio_url,
            duration=duration if duration is not None else self.duration,
        )


@dataclass(frozen=True)
class Book:
    """A book in the library; chapters are fixed at creation"""

    id: str
    title: str
    author: str
    chapters: Tuple[Chapter, ...] = field(default_factory=tuple)
    created_at: int = 0
    cover_image: Optional[str] = None

    def find_chapter(self, chapter_id: str) -> Optional[Chapter]:
        for chapter in self.chapters:
            if chapter.id == chapter_id:
                return chapter
        return None


# Ordered newest-first; index 0 is displayed first
Library = List[Book]


def find_book(books: Library, book_id: str) -> Optional[Book]:
    for book in books:
        if book.id == book_id:
            return book
    return None


def chapter_to_dict(chapter: Chapter) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": chapter.id,
        "title": chapter.title,
        "text": chapter.text,
    }
    if chapter.audio_url is not None:
        data["audioUrl"] = chapter.audio_url
    if chapter.duration is not None:
        data["duration"] = chapter.duration
    return data


def book_to_dict(book: Book) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": book.id,
        "title": book.title,
        "author": book.author,
        "chapters": [chapter_to_dict(c) for c in book.chapters],
        "createdAt": book.created_at,
    }
    if book.cover_image is not None:
        data["coverImage"] = book.cover_image
    return data


def chapter_from_dict(data: Dict[str, Any]) -> Chapter:
    duration = data.get("duration")
    return Chapter(
        id=str(data["id"]),
        title=data.get("title", ""),
        text=data.get("text", ""),
        audio_url=data.get("audioUrl") or None,
        duration=float(duration) if duration is not None else None,
    )


def book_from_dict(data: Dict[str, Any]) -> Book:
    return Book(
        id=str(data["id"]),
        title=data.get("title", ""),
        author=data.get("author", ""),
        chapters=tuple(chapter_from_dict(c) for c in data.get("chapters") or []),
        created_at=int(data.get("createdAt") or 0),
        cover_image=data.get("coverImage"),
    )


def encode_library(books: Library) -> str:
    """Serialize a library snapshot to the JSON wire format"""
    return json.dumps([book_to_dict(b) for b in books], ensure_ascii=False)


def decode_library(payload: Any) -> Library:
    """
    Decode a library snapshot from JSON text or already-parsed JSON
    Accepts a bare list of books or an object with a 'books' key
    """
    try:
        data = json.loads(payload) if isinstance(payload, (str, bytes)) else payload
    except json.JSONDecodeError as e:
        raise SnapshotFormatError(f"Snapshot is not valid JSON: {str(e)}") from e

    if isinstance(data, dict) and "books" in data:
        data = data["books"]

    if not isinstance(data, list):
        raise SnapshotFormatError(
            f"Snapshot must be a list of books, got {type(data).__name__}"
        )

    try:
        return [book_from_dict(item) for item in data]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise SnapshotFormatError(f"Malformed book in snapshot: {str(e)}") from e
