"""Tests for the chapter generation cache"""

import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from dastan.errors import GenerationError, GenerationInProgressError
from dastan.gemini_client import GeminiClient
from dastan.generation import ChapterStatus, GenerationCache, ProcessingState
from dastan.models import ProcessingStatus, find_book
from dastan.mutations import MutationApplier
from dastan.voices import URDU_VOICES

from conftest import FakeSynthesizer, make_book, make_response

VOICE = URDU_VOICES[1]


def build_cache(engine, synthesizer, timeout: float = 5.0):
    applier = MutationApplier(engine)
    return GenerationCache(engine, applier, synthesizer, ProcessingState(), timeout=timeout), applier


def chapter_of(engine, book_id, chapter_id):
    return find_book(engine.library, book_id).find_chapter(chapter_id)


class TestGenerate:
    def test_generates_and_attaches_audio(self, engine, room_provider) -> None:
        engine.set_library([make_book("b1")])
        synth = FakeSynthesizer()
        cache, applier = build_cache(engine, synth)
        chapter = chapter_of(engine, "b1", "b1-0")

        async def scenario():
            url = await cache.generate("b1", chapter, VOICE)
            await applier.flush()
            return url

        url = asyncio.run(scenario())

        assert synth.calls == [(chapter.text, "Puck")]
        assert chapter_of(engine, "b1", "b1-0").audio_url == url
        assert chapter_of(engine, "b1", "b1-0").duration == 12.5
        assert chapter_of(engine, "b1", "b1-1").audio_url is None
        assert cache.processing.status == ProcessingStatus.IDLE
        assert room_provider.pushed  # attach was pushed

    def test_second_call_is_free(self, engine) -> None:
        engine.set_library([make_book("b1")])
        synth = FakeSynthesizer()
        cache, applier = build_cache(engine, synth)
        stale_chapter = chapter_of(engine, "b1", "b1-0")

        async def scenario():
            first = await cache.generate("b1", stale_chapter, VOICE)
            # Passing the pre-generation object still hits the cache
            second = await cache.generate("b1", stale_chapter, VOICE)
            third = await cache.generate("b1", chapter_of(engine, "b1", "b1-0"), VOICE)
            await applier.flush()
            return first, second, third

        first, second, third = asyncio.run(scenario())

        assert first == second == third
        assert len(synth.calls) == 1

    def test_chapter_with_audio_makes_no_call(self, engine) -> None:
        engine.set_library([make_book("b1", audio=True)])
        synth = FakeSynthesizer()
        cache, _ = build_cache(engine, synth)

        url = asyncio.run(cache.generate("b1", chapter_of(engine, "b1", "b1-0"), VOICE))

        assert url == "data:audio/wav;base64,AAAA"
        assert synth.calls == []

    def test_only_one_generation_in_flight(self, engine) -> None:
        engine.set_library([make_book("b1")])
        gate = threading.Event()
        synth = FakeSynthesizer(gate=gate)
        cache, applier = build_cache(engine, synth)
        first_chapter = chapter_of(engine, "b1", "b1-0")
        second_chapter = chapter_of(engine, "b1", "b1-1")

        async def scenario():
            first = asyncio.create_task(cache.generate("b1", first_chapter, VOICE))
            await asyncio.sleep(0)
            assert cache.processing.status == ProcessingStatus.GENERATING_AUDIO
            assert cache.chapter_status("b1", "b1-0") == ChapterStatus.GENERATING
            with pytest.raises(GenerationInProgressError):
                await cache.generate("b1", second_chapter, VOICE)
            gate.set()
            await first
            await applier.flush()

        asyncio.run(scenario())

        assert len(synth.calls) == 1
        assert chapter_of(engine, "b1", "b1-1").audio_url is None

    def test_failure_sets_error_and_stores_nothing(self, engine, room_provider) -> None:
        engine.set_library([make_book("b1")])
        synth = FakeSynthesizer(error=GenerationError("quota exceeded"))
        cache, _ = build_cache(engine, synth)

        with pytest.raises(GenerationError):
            asyncio.run(cache.generate("b1", chapter_of(engine, "b1", "b1-0"), VOICE))

        assert cache.processing.status == ProcessingStatus.ERROR
        assert chapter_of(engine, "b1", "b1-0").audio_url is None
        assert cache.chapter_status("b1", "b1-0") == ChapterStatus.FAILED
        assert room_provider.pushed == []

    def test_timeout_is_a_generation_error(self, engine) -> None:
        engine.set_library([make_book("b1")])
        gate = threading.Event()
        synth = FakeSynthesizer(gate=gate)
        cache, _ = build_cache(engine, synth, timeout=0.05)
        # Release the worker thread soon after the timeout fires
        threading.Timer(0.2, gate.set).start()

        with pytest.raises(GenerationError):
            asyncio.run(cache.generate("b1", chapter_of(engine, "b1", "b1-0"), VOICE))

        assert cache.processing.status == ProcessingStatus.ERROR

    def test_error_status_does_not_block_retry(self, engine) -> None:
        engine.set_library([make_book("b1")])
        synth = FakeSynthesizer(error=GenerationError("boom"))
        cache, applier = build_cache(engine, synth)
        chapter = chapter_of(engine, "b1", "b1-0")

        with pytest.raises(GenerationError):
            asyncio.run(cache.generate("b1", chapter, VOICE))

        synth.error = None

        async def retry():
            url = await cache.generate("b1", chapter, VOICE)
            await applier.flush()
            return url

        assert asyncio.run(retry())
        assert cache.chapter_status("b1", "b1-0") == ChapterStatus.READY

    def test_book_deleted_during_generation_is_noop(self, engine) -> None:
        engine.set_library([make_book("b1")])
        gate = threading.Event()
        synth = FakeSynthesizer(gate=gate)
        cache, applier = build_cache(engine, synth)
        chapter = chapter_of(engine, "b1", "b1-0")

        async def scenario():
            task = asyncio.create_task(cache.generate("b1", chapter, VOICE))
            await asyncio.sleep(0)
            # A pull replaced the library without this book
            engine.set_library([make_book("b2")])
            gate.set()
            await task
            await applier.flush()

        asyncio.run(scenario())

        assert [b.id for b in engine.library] == ["b2"]
        assert cache.processing.status == ProcessingStatus.IDLE


class TestGenerateBook:
    def test_generates_missing_chapters_sequentially(self, engine) -> None:
        book = make_book("b1", chapters=3)
        engine.set_library([book])
        synth = FakeSynthesizer()
        cache, applier = build_cache(engine, synth)
        progressed = []

        async def scenario():
            summary = await cache.generate_book("b1", VOICE, on_progress=lambda c: progressed.append(c.id))
            await applier.flush()
            return summary

        summary = asyncio.run(scenario())

        assert summary == {"generated": 3, "cached": 0, "errors": []}
        assert progressed == ["b1-0", "b1-1", "b1-2"]
        assert all(c.has_audio for c in find_book(engine.library, "b1").chapters)

    def test_unknown_book(self, engine) -> None:
        cache, _ = build_cache(engine, FakeSynthesizer())
        with pytest.raises(KeyError):
            asyncio.run(cache.generate_book("missing", VOICE))


class TestUnexpectedFailures:
    def test_unexpected_synthesizer_error_releases_status(self, engine) -> None:
        engine.set_library([make_book("b1")])
        synth = FakeSynthesizer(error=RuntimeError("boom"))
        cache, applier = build_cache(engine, synth)
        chapter = chapter_of(engine, "b1", "b1-0")

        with pytest.raises(GenerationError):
            asyncio.run(cache.generate("b1", chapter, VOICE))

        assert cache.processing.status == ProcessingStatus.ERROR
        assert cache.chapter_status("b1", "b1-0") == ChapterStatus.FAILED

        synth.error = None

        async def retry():
            url = await cache.generate("b1", chapter, VOICE)
            await applier.flush()
            return url

        assert asyncio.run(retry())
        assert cache.processing.status == ProcessingStatus.IDLE

    def test_malformed_service_response_is_a_generation_error(self, engine) -> None:
        engine.set_library([make_book("b1")])
        session = MagicMock()
        session.headers = {}
        session.post.return_value = make_response(200, '{"candidates": [{"content": {"parts": ["x"]}}]}')
        client = GeminiClient("key", session=session)
        cache, _ = build_cache(engine, client)

        with pytest.raises(GenerationError):
            asyncio.run(cache.generate("b1", chapter_of(engine, "b1", "b1-0"), VOICE))

        assert cache.processing.status == ProcessingStatus.ERROR

    def test_timed_out_call_blocks_new_generation_until_it_returns(self, engine) -> None:
        engine.set_library([make_book("b1")])
        gate = threading.Event()
        synth = FakeSynthesizer(gate=gate)
        cache, applier = build_cache(engine, synth, timeout=0.05)

        async def scenario():
            with pytest.raises(GenerationError):
                await cache.generate("b1", chapter_of(engine, "b1", "b1-0"), VOICE)
            assert cache.processing.status == ProcessingStatus.ERROR
            assert cache.worker_running

            with pytest.raises(GenerationInProgressError):
                await cache.generate("b1", chapter_of(engine, "b1", "b1-1"), VOICE)

            gate.set()
            while cache.worker_running:
                await asyncio.sleep(0.01)

            cache.timeout = 5.0
            url = await cache.generate("b1", chapter_of(engine, "b1", "b1-1"), VOICE)
            await applier.flush()
            return url

        url = asyncio.run(scenario())

        assert url
        assert len(synth.calls) == 2
        # The late result of the timed-out call is never attached
        assert chapter_of(engine, "b1", "b1-0").audio_url is None
