"""Translate UI key names into tmux send-keys arguments."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# UI key name -> tmux key name
TMUX_KEY_NAMES: dict[str, str] = {
    "enter": "Enter",
    "tab": "Tab",
    "backspace": "BSpace",
    "esc": "Escape",
    "up": "Up",
    "down": "Down",
    "right": "Right",
    "left": "Left",
    "home": "Home",
    "end": "End",
    "pgup": "PPage",
    "pgdown": "NPage",
    "delete": "DC",
    "ctrl+c": "C-c",
    "ctrl+d": "C-d",
    "ctrl+z": "C-z",
    "ctrl+l": "C-l",
    "ctrl+a": "C-a",
    "ctrl+e": "C-e",
    "ctrl+k": "C-k",
    "ctrl+u": "C-u",
    "ctrl+w": "C-w",
}

LITERAL_KEY_NAMES: dict[str, str] = {
    "space": " ",
}


@dataclass(frozen=True)
class KeyInput:
    """One send-keys invocation: key names, or literal text when ``literal``."""

    keys: tuple[str, ...]
    literal: bool = False


ESCAPE = KeyInput(("Escape",))


def translate_key(key: str) -> Optional[KeyInput]:
    """Map a UI key name to tmux input, or None when the key has no mapping."""
    if not key:
        return None
    named = TMUX_KEY_NAMES.get(key)
    if named:
        return KeyInput((named,))
    literal = LITERAL_KEY_NAMES.get(key)
    if literal:
        return KeyInput((literal,), literal=True)
    if key.startswith("ctrl+") and len(key) == 6 and key[5].isalpha():
        return KeyInput((f"C-{key[5]}",))
    if key.startswith("alt+") and len(key) == 5:
        return KeyInput((f"M-{key[4]}",))
    # Single characters and pasted runes go through literally; any other
    # multi-character name is an unmapped special key.
    if len(key) == 1 or not key.isascii():
        return KeyInput((key,), literal=True)
    return None
