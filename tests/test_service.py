"""Tests for request de-duplication and the processing queue."""

import asyncio

import pytest

import imgset
from imgset.errors import ConfigurationError, InputError, MaterializationError
from imgset.io.models import ImageMetadata
from imgset.pipeline.memory_cache import MemoryCache
from imgset.pipeline.queue import ProcessingQueue
from imgset.pipeline.service import DerivationService


class TestDeduplication:
    """Tests for DerivationService.derive."""

    @pytest.mark.asyncio
    async def test_concurrent_equivalent_requests_share_work(self, make_fake_codec, out_dir):
        codec = make_fake_codec(ImageMetadata(width=640, height=480, format="jpeg"))
        service = DerivationService(codec=codec)
        options = {"formats": ["webp"], "output_dir": str(out_dir)}

        first = service.derive(b"source-bytes", options)
        second = service.derive(b"source-bytes", dict(options))
        assert first is second

        results = await asyncio.gather(first, second)
        assert results[0] is results[1]
        assert codec.open_calls == 1
        assert len(codec.encode_calls) == 1

    @pytest.mark.asyncio
    async def test_completed_result_is_reused(self, make_fake_codec, out_dir):
        codec = make_fake_codec(ImageMetadata(width=640, height=480, format="jpeg"))
        service = DerivationService(codec=codec)

        first = await service.derive(b"source-bytes", output_dir=str(out_dir))
        second = await service.derive(b"source-bytes", output_dir=str(out_dir))
        assert first is second
        assert codec.open_calls == 1

    @pytest.mark.asyncio
    async def test_different_options_are_not_shared(self, make_fake_codec, out_dir):
        codec = make_fake_codec(ImageMetadata(width=640, height=480, format="jpeg"))
        service = DerivationService(codec=codec)

        first = service.derive(b"source-bytes", widths=[100], output_dir=str(out_dir))
        second = service.derive(b"source-bytes", widths=[200], output_dir=str(out_dir))
        assert first is not second
        await asyncio.gather(first, second)
        assert codec.open_calls == 2

    @pytest.mark.asyncio
    async def test_buffers_of_same_length_are_distinct(self, make_fake_codec):
        codec = make_fake_codec(ImageMetadata(width=64, height=64, format="jpeg"))
        service = DerivationService(codec=codec)

        first = service.derive(b"aaaa", dry_run=True)
        second = service.derive(b"bbbb", dry_run=True)
        assert first is not second
        await asyncio.gather(first, second)
        assert codec.open_calls == 2

    @pytest.mark.asyncio
    async def test_use_cache_false_bypasses_memory_cache(self, make_fake_codec):
        codec = make_fake_codec(ImageMetadata(width=64, height=64, format="jpeg"))
        service = DerivationService(codec=codec)

        first = service.derive(b"source", use_cache=False, dry_run=True)
        second = service.derive(b"source", use_cache=False, dry_run=True)
        assert first is not second
        await asyncio.gather(first, second)
        assert len(service.cache) == 0

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, make_fake_codec, out_dir):
        codec = make_fake_codec(ImageMetadata(width=64, height=64, format="jpeg"), fail=True)
        service = DerivationService(codec=codec)
        options = {"formats": ["jpeg"], "output_dir": str(out_dir)}

        failed = service.derive(b"source", options)
        with pytest.raises(MaterializationError):
            await failed
        assert len(service.cache) == 0

        codec.fail = False
        retried = service.derive(b"source", options)
        assert retried is not failed
        plan = await retried
        assert plan["jpeg"][0].size == 64

    @pytest.mark.asyncio
    async def test_waiting_callers_observe_the_same_failure(self, make_fake_codec):
        codec = make_fake_codec(ImageMetadata(width=64, height=64, format="jpeg"), fail=True)
        service = DerivationService(codec=codec)

        first = service.derive(b"source", dry_run=True)
        second = service.derive(b"source", dry_run=True)
        results = await asyncio.gather(first, second, return_exceptions=True)
        assert results[0] is results[1]
        assert isinstance(results[0], MaterializationError)

    @pytest.mark.asyncio
    async def test_missing_local_file_raises_input_error(self, tmp_path):
        service = DerivationService()
        with pytest.raises(InputError):
            service.derive(str(tmp_path / "missing.jpg"))


class TestMemoryCache:
    """Tests for MemoryCache."""

    @pytest.mark.asyncio
    async def test_successful_entries_persist(self):
        cache = MemoryCache()
        future = asyncio.get_running_loop().create_future()
        cache.put("key", future)
        future.set_result("value")
        await asyncio.sleep(0)

        assert cache.get("key") is future
        assert "key" in cache

    @pytest.mark.asyncio
    async def test_failed_entries_are_evicted(self):
        cache = MemoryCache()
        future = asyncio.get_running_loop().create_future()
        cache.put("key", future)
        future.set_exception(RuntimeError("boom"))
        await asyncio.sleep(0)

        assert cache.get("key") is None
        assert len(cache) == 0


class TestProcessingQueue:
    """Tests for ProcessingQueue."""

    @pytest.mark.asyncio
    async def test_limits_parallel_jobs(self):
        queue = ProcessingQueue(concurrency=2)
        running = 0
        peak = 0

        async def job():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return "done"

        results = await asyncio.gather(*(queue.add(job) for _ in range(6)))
        assert results == ["done"] * 6
        assert peak == 2
        assert queue.active == 0 and queue.pending == 0

    @pytest.mark.asyncio
    async def test_fifo_admission(self):
        queue = ProcessingQueue(concurrency=1)
        order = []

        def make_job(index):
            async def job():
                order.append(index)
                await asyncio.sleep(0)

            return job

        await asyncio.gather(*(queue.add(make_job(i)) for i in range(5)))
        assert order == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_counts_and_raising_limit(self):
        queue = ProcessingQueue(concurrency=1)
        release = asyncio.Event()

        async def job():
            await release.wait()

        tasks = [queue.add(job) for _ in range(3)]
        await asyncio.sleep(0)
        assert queue.active == 1
        assert queue.pending == 2

        queue.concurrency = 3
        assert queue.active == 3
        assert queue.pending == 0

        release.set()
        await asyncio.gather(*tasks)
        assert queue.active == 0

    @pytest.mark.asyncio
    async def test_lowering_limit_keeps_running_jobs(self):
        queue = ProcessingQueue(concurrency=2)
        release = asyncio.Event()

        async def job():
            await release.wait()

        tasks = [queue.add(job) for _ in range(3)]
        await asyncio.sleep(0)
        queue.concurrency = 1
        assert queue.active == 2
        assert queue.pending == 1

        release.set()
        await asyncio.gather(*tasks)
        assert queue.active == 0

    @pytest.mark.asyncio
    async def test_failing_job_releases_slot(self):
        queue = ProcessingQueue(concurrency=1)

        async def boom():
            raise RuntimeError("boom")

        async def ok():
            return 1

        with pytest.raises(RuntimeError):
            await queue.add(boom)
        assert await queue.add(ok) == 1

    @pytest.mark.parametrize("value", [0, -1, 1.5, True, "4"])
    def test_rejects_invalid_concurrency(self, value):
        with pytest.raises(ConfigurationError):
            ProcessingQueue(concurrency=value)


class TestModuleConcurrency:
    """Tests for the module-level concurrency property."""

    def test_get_and_set(self):
        original = imgset.concurrency
        try:
            imgset.concurrency = 3
            assert imgset.concurrency == 3
            assert imgset.default_service.concurrency == 3
        finally:
            imgset.concurrency = original

    def test_invalid_value_rejected(self):
        with pytest.raises(ConfigurationError):
            imgset.concurrency = 0

    @pytest.mark.asyncio
    async def test_module_derive(self, jpeg_path, out_dir):
        plan = await imgset.derive(str(jpeg_path), formats=["jpeg"], widths=[100], output_dir=str(out_dir))
        assert [(s.width, s.height) for s in plan["jpeg"]] == [(100, 66)]
