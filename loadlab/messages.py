"""Payload generation for message-size sensitive scenarios."""
from __future__ import annotations

import random
import string
from typing import Any, Callable, List, Optional

ALPHABET = string.ascii_letters + string.digits


def generate_message(size_bytes: int, rng: Optional[random.Random] = None) -> str:
    if size_bytes < 0:
        raise ValueError(f"Message size must be non-negative, received {size_bytes}")
    chooser = rng or random
    return "".join(chooser.choices(ALPHABET, k=size_bytes))


def message_args(
    size_bytes: int, rng: Optional[random.Random] = None
) -> Callable[[int], List[Any]]:
    """Argument generator for ``sendMessage``: a fresh message per call index."""

    def _args(_index: int) -> List[Any]:
        return [generate_message(size_bytes, rng)]

    return _args
