"""Tests for payout_kernel.utils.batching and payout_kernel.utils.idempotency."""

import pytest

from payout_kernel.utils.batching import chunked, process_in_batches
from payout_kernel.utils.idempotency import generate_idempotency_key, parse_idempotency_key


class TestChunked:
    def test_last_chunk_may_be_short(self):
        assert [list(c) for c in chunked(list(range(7)), 3)] == [[0, 1, 2], [3, 4, 5], [6]]

    def test_empty_input_yields_nothing(self):
        assert list(chunked([], 5)) == []

    @pytest.mark.parametrize("size", [0, -1])
    def test_non_positive_size_rejected(self, size):
        with pytest.raises(ValueError):
            list(chunked([1, 2], size))


class TestProcessInBatches:
    def test_preserves_order_and_concatenates(self):
        seen = []

        def processor(chunk):
            seen.append(list(chunk))
            return [x * 10 for x in chunk]

        result = process_in_batches([1, 2, 3, 4, 5], 2, processor)
        assert result == [10, 20, 30, 40, 50]
        assert seen == [[1, 2], [3, 4], [5]]

    def test_batch_larger_than_input(self):
        assert process_in_batches([1, 2], 100, lambda c: list(c)) == [1, 2]

    def test_processor_error_stops_processing(self):
        seen = []

        def processor(chunk):
            seen.append(list(chunk))
            if 3 in chunk:
                raise RuntimeError("bad batch")
            return chunk

        with pytest.raises(RuntimeError):
            process_in_batches([1, 2, 3, 4, 5], 2, processor)
        assert seen == [[1, 2], [3, 4]]

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            process_in_batches([1], 0, lambda c: c)

    def test_batches_are_logged(self, captured_logs):
        process_in_batches(list(range(5)), 2, lambda c: c)
        batches = [r for r in captured_logs() if r["message"] == "batch_processing"]
        assert [b["batch_number"] for b in batches] == [1, 2, 3]
        assert batches[0]["batch_count"] == 3


class TestIdempotencyKeys:
    def test_generate(self):
        key = generate_idempotency_key("automation", "DividendDistribution", "2026-02")
        assert key == "automation:DividendDistribution:2026-02"

    def test_parse_round_trip(self):
        assert parse_idempotency_key("automation:MonthlyRevenueCalculation:2026-02") == (
            "automation", "MonthlyRevenueCalculation", ("2026-02",),
        )

    def test_parse_rejects_single_segment(self):
        with pytest.raises(ValueError):
            parse_idempotency_key("automation")
