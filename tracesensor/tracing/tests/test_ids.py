from __future__ import annotations

import threading
from unittest.mock import patch

import pytest

from tracesensor.tracing.ids import MAX_ID, IDGenerator, format_id, generate_id, parse_id


class TestIDGenerator:
    def test_ids_are_non_zero_and_64_bit(self):
        generator = IDGenerator()
        for _ in range(1000):
            value = generator.new_id()
            assert 0 < value <= MAX_ID

    def test_zero_is_never_returned(self):
        with patch("tracesensor.tracing.ids.secrets.randbits", side_effect=[0, 0, 42]):
            assert IDGenerator().new_id() == 42

    def test_ids_are_unique_in_practice(self):
        ids = {generate_id() for _ in range(100_000)}
        assert len(ids) == 100_000

    def test_concurrent_generation(self):
        results: list[list[int]] = [[] for _ in range(8)]

        def worker(bucket: list[int]) -> None:
            for _ in range(2_000):
                bucket.append(generate_id())

        threads = [threading.Thread(target=worker, args=(bucket,)) for bucket in results]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        all_ids = [value for bucket in results for value in bucket]
        assert len(all_ids) == 16_000
        assert len(set(all_ids)) == 16_000
        assert all(value > 0 for value in all_ids)


class TestFormatAndParse:
    def test_format_is_lowercase_unpadded_hex(self):
        assert format_id(0xABC) == "abc"
        assert format_id(MAX_ID) == "ffffffffffffffff"

    def test_parse_accepts_mixed_case(self):
        assert parse_id("ABCdef") == 0xABCDEF

    def test_parse_round_trips_format(self):
        value = generate_id()
        assert parse_id(format_id(value)) == value

    def test_parse_strips_whitespace(self):
        assert parse_id(" 1f ") == 0x1F

    @pytest.mark.parametrize(
        "value",
        ["", "0", "000", "xyz", "0x1f", "-1", "1_000", "1" * 17, "12 34"],
    )
    def test_parse_rejects_invalid(self, value):
        with pytest.raises(ValueError):
            parse_id(value)
