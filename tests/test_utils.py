"""Tests for key generation and small helpers."""

import re

import pytest

from notes_site.backend.domain import ValidationError
from notes_site.backend.utils import decode, generate, make_id, new_key, time_now

URL_SAFE = re.compile(r"^[A-Za-z0-9_.~-]+$")


class TestGenerate:
    def test_same_seed_same_key(self):
        assert generate(1000) == generate(1000)

    def test_known_value(self):
        # 1000 == 31 * 32 + 8
        assert generate(1000) == "0000000v8"

    def test_keys_are_url_safe(self):
        for seed in (0, 1, 1000, 1_700_000_000_000, 2**62):
            assert URL_SAFE.match(generate(seed))

    def test_millisecond_keys_sort_in_seed_order(self):
        seeds = [1_700_000_000_000, 1_700_000_000_001, 1_700_000_099_999, 1_800_000_000_000]
        keys = [generate(s) for s in seeds]
        assert keys == sorted(keys)
        assert len({len(k) for k in keys}) == 1

    def test_decode_reverses_generate(self):
        assert decode(generate(1_712_345_678_901)) == 1_712_345_678_901

    @pytest.mark.parametrize("seed", [-1, 1.5, "1000", None, True])
    def test_rejects_bad_seeds(self, seed):
        with pytest.raises(ValidationError):
            generate(seed)

    def test_decode_rejects_foreign_characters(self):
        with pytest.raises(ValidationError):
            decode("00x")
        with pytest.raises(ValidationError):
            decode("")


def test_new_key_uses_clock_in_milliseconds():
    assert new_key(lambda: 1.0) == generate(1000)


def test_make_id_prefix():
    assert make_id("sess").startswith("sess_")
    assert make_id("sess") != make_id("sess")


def test_time_now_has_no_microseconds():
    assert "." not in time_now()
    assert time_now().endswith("+00:00")
