#!/usr/bin/env python3
"""
Dastan Library Sync Tool

A CLI that keeps a personal library of chaptered books in sync across devices
through a shared room or a private gist, and narrates chapters on demand.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

from tqdm import tqdm

from dastan.config import Config
from dastan.errors import ConfigurationError, DastanError, ExtractionError, GenerationError
from dastan.gemini_client import GeminiClient
from dastan.generation import ChapterStatus
from dastan.library_app import LibraryApp
from dastan.local_store import LocalStore
from dastan.models import find_book
from dastan.providers import GistProvider
from dastan.sync_engine import PullResult, PushOutcome
from dastan.sync_state import ProviderKind
from dastan.utils import from_data_uri, mask_secret
from dastan.voices import URDU_VOICES, get_voice

DEFAULT_CONFIG_PATH = "config/config.yaml"


LOG_FORMAT_FULL = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FORMAT_SHORT = "%(asctime)s - %(levelname)s - %(message)s"
NOISY_LOGGERS = ("urllib3.connectionpool", "requests")


def _handler(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def setup_logging(verbose: bool = False, log_file: str = "dastan_sync.log") -> None:
    """
    Log everything to log_file; the console only shows warnings unless verbose

    Sync and generation progress is printed by the commands themselves, so
    INFO records stay in the file during normal use.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)

    root_logger.addHandler(_handler(logging.FileHandler(log_file), logging.DEBUG, LOG_FORMAT_FULL))
    if verbose:
        root_logger.addHandler(_handler(logging.StreamHandler(sys.stdout), logging.DEBUG, LOG_FORMAT_FULL))
    else:
        root_logger.addHandler(_handler(logging.StreamHandler(sys.stdout), logging.WARNING, LOG_FORMAT_SHORT))
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def build_app(config: Config) -> LibraryApp:
    """Create the app with its local store and Gemini-backed services"""
    store = LocalStore(os.path.join(config.data_dir, ".dastan_state.db"))
    gemini = GeminiClient(**config.get_gemini_config(), timeout=config.generation_timeout)
    app = LibraryApp(config, store, extractor=gemini, synthesizer=gemini)

    def on_sync_error(error: Exception, context: str) -> None:
        if context == "unauthorized":
            print("\n🔒 Sync failed: GitHub token invalid. Switched to local-only mode.")
            print("   Run 'dastan connect private --token ... --gist ...' to reconnect.")

    app.engine.add_error_listener(on_sync_error)
    return app


def report_push(outcome: PushOutcome) -> None:
    if outcome.success:
        print("☁️  Library synced.")
    elif outcome.reconnect_required:
        print("⚠️  Saved locally; reconnect required before changes can sync.")
    elif outcome.stale:
        print("⚠️  Saved locally; sync configuration changed before the push completed.")
    else:
        print(f"⚠️  Saved locally; sync failed ({outcome.error}). Will retry on the next change.")


def show_status(app: LibraryApp) -> None:
    status = app.engine.status()
    state = app.engine.state
    print("=" * 50)
    print("📚 SYNC STATUS")
    print("=" * 50)
    print(f"Provider: {status.provider} ({status.label})")
    if state.provider == ProviderKind.PRIVATE:
        print(f"Gist: {state.resource_id}  Token: {mask_secret(state.token)}")
    print(f"Last synced: {status.last_synced_display}")
    print(f"Books: {status.book_count}")
    print(f"Voice: {app.selected_voice.name}")
    if status.reconnect_required:
        print("🔒 Reconnect required: the private store rejected the saved token.")
    print("=" * 50)


def list_books(app: LibraryApp) -> None:
    books = app.books
    if not books:
        print("📭 The library is empty. Add a document with 'dastan add'.")
        return
    for book in books:
        narrated = sum(1 for c in book.chapters if c.has_audio)
        print(f"{book.id}  {book.title} - {book.author} ({narrated}/{len(book.chapters)} chapters narrated)")


def show_book(app: LibraryApp, book_id: str) -> bool:
    book = app.select_book(book_id)
    if book is None:
        print(f"❌ Book not found: {book_id}")
        return False
    print(f"📖 {book.title} - {book.author}")
    for chapter in book.chapters:
        status = app.generation.chapter_status(book.id, chapter.id)
        marker = "🔊" if status == ChapterStatus.READY else "  "
        duration = f" ({chapter.duration:.0f}s)" if chapter.duration else ""
        print(f"  {marker} {chapter.id}  {chapter.title}{duration}")
    return True


async def run_command(args: argparse.Namespace, app: LibraryApp) -> int:
    """Execute a command inside the event loop; returns the exit code"""
    command = args.command

    if command == "connect":
        provider = ProviderKind.parse(args.provider)
        gist_id = args.gist
        if provider == ProviderKind.PRIVATE and args.create and args.token and not gist_id:
            gist_id = await asyncio.to_thread(GistProvider.create, args.token, app.config.request_timeout)
            print(f"✨ Created private gist {gist_id}")
        result = await app.reconfigure(provider, args.room, args.token, gist_id)
        print(f"✅ Connected: {app.engine.state.label} (initial pull: {result.value})")
        return 0

    # Every other command starts from the freshest remote snapshot
    result = await app.refresh()

    if command == "pull":
        print(f"🔄 Pull {result.value}: {len(app.books)} books")
        return 0 if result != PullResult.FAILED else 1

    if command == "status":
        show_status(app)
        return 0

    if command == "list":
        list_books(app)
        return 0

    if command == "show":
        return 0 if show_book(app, args.book_id) else 1

    if command == "add":
        push = await app.upload(args.input, custom_title=args.title)
        book = app.books[0]
        print(f"✅ Added '{book.title}' ({len(book.chapters)} chapters) as {book.id}")
        report_push(await push)
        return 0

    if command == "delete":
        book = find_book(app.books, args.book_id)
        if book is None:
            print(f"❌ Book not found: {args.book_id}")
            return 1
        if not args.yes:
            confirm = input(f"🗑️  Delete '{book.title}'? (y/N): ").strip().lower()
            if confirm not in ["y", "yes"]:
                print("❌ Delete cancelled.")
                return 0
        push = app.delete_book(book.id)
        print(f"✅ Deleted '{book.title}'")
        report_push(await push)
        return 0

    if command == "generate":
        if args.voice:
            app.select_voice(args.voice)
        chapter = await app.play_chapter(args.book_id, args.chapter_id)
        print(f"🔊 Audio ready for '{chapter.title}'" + (f" ({chapter.duration:.0f}s)" if chapter.duration else ""))
        if args.output and chapter.audio_url:
            with open(args.output, "wb") as f:
                f.write(from_data_uri(chapter.audio_url))
            print(f"💾 Saved to {args.output}")
        await app.close()
        return 0

    if command == "generate-book":
        if args.voice:
            app.select_voice(args.voice)
        book = find_book(app.books, args.book_id)
        if book is None:
            print(f"❌ Book not found: {args.book_id}")
            return 1
        with tqdm(total=len(book.chapters), desc="Narrating chapters", unit="chapter") as pbar:
            summary = await app.generation.generate_book(
                book.id, app.selected_voice, on_progress=lambda chapter: pbar.update(1)
            )
        await app.close()
        print(f"✅ Generated: {summary['generated']}  Already narrated: {summary['cached']}")
        if summary["errors"]:
            print(f"❌ Failures: {len(summary['errors'])}")
            for error in summary["errors"]:
                print(f"  - {error}")
            return 1
        return 0

    if command == "watch":
        print(f"🕐 Watching {app.engine.state.label}. Press Ctrl+C to stop.")
        await app.engine.run(interval=args.interval)
        return 0

    raise ValueError(f"Unknown command: {command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Dastan Library Sync Tool - sync a chaptered library and narrate it on demand"
    )
    parser.add_argument("--config", "-c", default=None, help="Path to config YAML (default: config/config.yaml if present)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show sync status")
    sub.add_parser("pull", help="Pull the latest library snapshot")
    sub.add_parser("list", help="List books in the library")
    sub.add_parser("config", help="Show configuration")

    show = sub.add_parser("show", help="Show a book's chapters")
    show.add_argument("book_id")

    add = sub.add_parser("add", help="Extract a document and add it as a book")
    add.add_argument("input", help="Path to a PDF, image or text file, or literal text")
    add.add_argument("--title", help="Override the extracted title")

    delete = sub.add_parser("delete", help="Delete a book")
    delete.add_argument("book_id")
    delete.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    generate = sub.add_parser("generate", help="Generate narration for one chapter")
    generate.add_argument("book_id")
    generate.add_argument("chapter_id")
    generate.add_argument("--voice", help="Voice id or name (see 'voices')")
    generate.add_argument("--output", "-o", help="Write the WAV audio to this file")

    generate_book = sub.add_parser("generate-book", help="Narrate every chapter of a book")
    generate_book.add_argument("book_id")
    generate_book.add_argument("--voice", help="Voice id or name (see 'voices')")

    connect = sub.add_parser("connect", help="Choose where the library is synced")
    connect.add_argument("provider", choices=[p.value for p in ProviderKind] + ["github"])
    connect.add_argument("--room", help="Room id for the public provider")
    connect.add_argument("--token", help="GitHub token for the private provider")
    connect.add_argument("--gist", help="Gist id for the private provider")
    connect.add_argument("--create", action="store_true", help="Create a new private gist")

    voices = sub.add_parser("voices", help="List narration voices")
    voices.add_argument("--select", help="Voice id or name to use by default")

    watch = sub.add_parser("watch", help="Poll the remote store continuously")
    watch.add_argument("--interval", type=float, default=None, help="Seconds between pulls")

    return parser


def show_voices(app: LibraryApp, select: Optional[str]) -> int:
    if select:
        if get_voice(select) is None:
            print(f"❌ Unknown voice: {select}")
            return 1
        app.select_voice(select)
    for voice in URDU_VOICES:
        marker = "▶" if voice.id == app.selected_voice.id else " "
        print(f"{marker} {voice.id}. {voice.name} [{voice.model_voice}] - {voice.description}")
    return 0


def main() -> None:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(verbose=args.verbose)
    logger = logging.getLogger(__name__)

    try:
        config_path = args.config
        if config_path is None and os.path.exists(DEFAULT_CONFIG_PATH):
            config_path = DEFAULT_CONFIG_PATH
        config = Config(config_path=config_path)

        if args.command == "config":
            print(config)
            return

        app = build_app(config)

        if args.command == "voices":
            sys.exit(show_voices(app, args.select))

        sys.exit(asyncio.run(run_command(args, app)))

    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        sys.exit(1)
    except ConfigurationError as e:
        print(f"\n❌ Invalid sync configuration: {str(e)}")
        sys.exit(2)
    except ExtractionError as e:
        print(f"\n❌ Failed to process the document: {str(e)}")
        sys.exit(1)
    except GenerationError as e:
        print(f"\n❌ Failed to generate audio: {str(e)}")
        sys.exit(1)
    except (DastanError, KeyError, ValueError, FileNotFoundError) as e:
        logger.error(f"Application error: {str(e)}")
        print(f"\n❌ {str(e)}")
        if args.verbose:
            logger.exception("Full error details:")
        sys.exit(1)


if __name__ == "__main__":
    main()
