"""
Dastan Library Sync Tool

Keeps a personal library of chaptered books consistent across devices through
a shared room or a private gist, and narrates chapters on demand.
"""

__version__ = "1.0.0"

from .config import Config
from .generation import GenerationCache
from .library_app import LibraryApp
from .main import main
from .mutations import AddBook, AttachAudio, DeleteBook, MutationApplier
from .sync_engine import SyncEngine

__all__ = [
    "main",
    "Config",
    "SyncEngine",
    "MutationApplier",
    "GenerationCache",
    "LibraryApp",
    "AddBook",
    "DeleteBook",
    "AttachAudio",
]
