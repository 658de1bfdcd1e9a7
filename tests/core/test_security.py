"""Unit tests for checksum helpers."""

from __future__ import annotations

import pytest

from core.security import content_hash, sign_payload, string_checksum, to_base36


class TestStringChecksum:
    def test_empty(self) -> None:
        assert string_checksum("") == 0

    def test_matches_rolling_hash(self) -> None:
        # "ab" -> 97 * 31 + 98
        assert string_checksum("ab") == 3105

    def test_wraps_to_signed_32_bit(self) -> None:
        value = string_checksum("x" * 100)
        assert -(2**31) <= value < 2**31


class TestToBase36:
    @pytest.mark.parametrize(
        ("number", "expected"), [(0, "0"), (35, "z"), (36, "10"), (1295, "zz")]
    )
    def test_encoding(self, number: int, expected: str) -> None:
        assert to_base36(number) == expected

    def test_negative_rejected(self) -> None:
        with pytest.raises(ValueError):
            to_base36(-1)


class TestSignPayload:
    def test_prefix_and_determinism(self) -> None:
        first = sign_payload("evt_1:2:send", "secret")
        assert first.startswith("sig_")
        assert first == sign_payload("evt_1:2:send", "secret")

    def test_secret_changes_signature(self) -> None:
        assert sign_payload("evt_1:2:send", "a") != sign_payload("evt_1:2:send", "b")


class TestContentHash:
    def test_empty_is_zero(self) -> None:
        assert content_hash("") == "0"

    def test_single_char(self) -> None:
        # (5381 * 33) ^ ord("a")
        assert content_hash("a") == to_base36((5381 * 33) ^ 97)

    def test_sensitive_to_edits(self) -> None:
        assert content_hash("Viết bài về Đà Nẵng") != content_hash("Viết bài về Đà Nẵng ")
