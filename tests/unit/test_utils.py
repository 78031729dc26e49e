"""Tests for utility helpers."""

import pytest

from ytdigest.utils import expand_env_vars, split_message


def test_expand_env_vars_nested(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("YTD_TEST_HOST", "redis.internal")
    config = {"redis": {"url": "redis://${YTD_TEST_HOST}:6379"}, "ids": ["${YTD_TEST_HOST}", 7]}

    assert expand_env_vars(config) == {"redis": {"url": "redis://redis.internal:6379"}, "ids": ["redis.internal", 7]}


def test_expand_env_vars_leaves_unknown_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("YTD_TEST_MISSING", raising=False)

    assert expand_env_vars("${YTD_TEST_MISSING}/x") == "${YTD_TEST_MISSING}/x"


def test_split_message_short_text_is_single_chunk() -> None:
    assert split_message("hello", 10) == ["hello"]
    assert split_message("", 10) == [""]


def test_split_message_prefers_newlines() -> None:
    text = "first line\nsecond line"

    assert split_message(text, 15) == ["first line", "second line"]


def test_split_message_falls_back_to_spaces() -> None:
    chunks = split_message("aaa bbb ccc ddd", 8)

    assert chunks == ["aaa bbb", "ccc ddd"]
    assert all(len(chunk) <= 8 for chunk in chunks)


def test_split_message_hard_cuts_long_words() -> None:
    assert split_message("abcdefghij", 4) == ["abcd", "efgh", "ij"]


def test_split_message_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError):
        split_message("text", 0)
