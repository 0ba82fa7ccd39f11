"""Tests for batched chunk processing."""

from unittest.mock import AsyncMock, patch

import pytest

from services.chunk_processor import ChunkProcessor, build_chunk_prompt, process_chunks, run_in_batches
from services.content_chunker import Chunk


def make_chunks(count: int, size: int = 100):
    return [
        Chunk(
            id=f"chunk-{n}",
            content=f"content of chunk {n}",
            start_index=(n - 1) * size,
            end_index=n * size,
            size=size,
            chunk_number=n,
            total_chunks=count,
            is_complete=n == count,
        )
        for n in range(1, count + 1)
    ]


class TestBuildChunkPrompt:

    def test_prompt_carries_position(self):
        chunk = make_chunks(3)[1]
        prompt = build_chunk_prompt(chunk)

        assert "Chunk 2 of 3" in prompt
        assert "Position: 100-200" in prompt
        assert "content of chunk 2" in prompt
        assert "sourceAnalysis" in prompt


class TestProcessChunks:
    """Tests for ChunkProcessor and the process_chunks entry point."""

    @pytest.mark.asyncio
    async def test_all_chunks_succeed(self, fake_request, valid_analysis_json, valid_analysis):
        request = fake_request(valid_analysis_json)
        results = await process_chunks(make_chunks(3), request, batch_size=2, batch_delay=0)

        assert [r.chunk_id for r in results] == ["chunk-1", "chunk-2", "chunk-3"]
        assert all(r.processed for r in results)
        assert results[0].result == valid_analysis
        assert results[0].size == 100
        assert len(request.prompts) == 3

    @pytest.mark.asyncio
    async def test_failing_chunk_does_not_abort_siblings(self, fake_request, valid_analysis_json):
        def reply(prompt):
            if "Chunk 2 of 3" in prompt:
                raise RuntimeError("upstream exploded")
            return valid_analysis_json

        results = await process_chunks(make_chunks(3), fake_request(reply), batch_size=3, batch_delay=0)

        assert [r.processed for r in results] == [True, False, True]
        assert results[1].error == "upstream exploded"
        assert results[1].result is None

    @pytest.mark.asyncio
    async def test_unparseable_response_marks_chunk_failed(self, fake_request):
        results = await process_chunks(make_chunks(2), fake_request("Sorry, I can't do that."), batch_delay=0)

        assert not any(r.processed for r in results)
        assert all(r.error for r in results)

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded_by_batch_size(self, fake_request, valid_analysis_json):
        request = fake_request(valid_analysis_json)
        processor = ChunkProcessor(request, batch_size=3, batch_delay=0)

        results = await processor.process_chunks(make_chunks(7))

        assert len(results) == 7
        assert len(request.prompts) == 7
        assert request.max_in_flight == 3

    @pytest.mark.asyncio
    async def test_operation_changes_instruction(self, fake_request, valid_analysis_json):
        request = fake_request(valid_analysis_json)
        await process_chunks(make_chunks(1), request, operation="summary", batch_delay=0)

        assert "Process this chunk." in request.prompts[0]


class TestRunInBatches:

    @pytest.mark.asyncio
    async def test_results_keep_input_order_and_batches_are_delayed(self):
        async def value(i):
            return i

        with patch("services.chunk_processor.asyncio.sleep", new=AsyncMock()) as sleep:
            results = await run_in_batches([lambda i=i: value(i) for i in range(7)], batch_size=3, delay=0.5)

        assert results == list(range(7))
        # Three batches, so two pauses between them
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.5)

    @pytest.mark.asyncio
    async def test_empty_input(self):
        assert await run_in_batches([], batch_size=3) == []

    @pytest.mark.asyncio
    async def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            await run_in_batches([], batch_size=0)
