"""Unit tests for key translation."""

import pytest

from devtrack.sessions.keys import KeyInput, translate_key


@pytest.mark.parametrize(
    "key,expected",
    [
        ("enter", "Enter"),
        ("esc", "Escape"),
        ("backspace", "BSpace"),
        ("pgup", "PPage"),
        ("ctrl+c", "C-c"),
        ("ctrl+x", "C-x"),
        ("alt+b", "M-b"),
    ],
)
def test_named_keys(key, expected):
    assert translate_key(key) == KeyInput((expected,))


def test_space_is_sent_literally():
    assert translate_key("space") == KeyInput((" ",), literal=True)


def test_single_characters_are_literal():
    assert translate_key("q") == KeyInput(("q",), literal=True)
    assert translate_key(";") == KeyInput((";",), literal=True)


def test_pasted_unicode_is_literal():
    assert translate_key("héllo") == KeyInput(("héllo",), literal=True)


def test_unmapped_names_return_none():
    assert translate_key("f13") is None
    assert translate_key("ctrl+1") is None
    assert translate_key("") is None
