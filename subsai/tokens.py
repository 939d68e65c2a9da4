"""Token cost estimation for grouping."""

from __future__ import annotations

import math
from typing import Protocol

import tiktoken
from loguru import logger

FALLBACK_ENCODING = "o200k_base"


class TokenEstimator(Protocol):
    def count(self, text: str) -> int:
        ...


class TiktokenEstimator:
    """Counts tokens with the encoding the target model uses."""

    def __init__(self, model: str) -> None:
        self.model = model
        try:
            self._encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            logger.debug(
                "No tiktoken mapping for model {}, using {}", model, FALLBACK_ENCODING
            )
            self._encoding = tiktoken.get_encoding(FALLBACK_ENCODING)

    def count(self, text: str) -> int:
        return len(self._encoding.encode(text, disallowed_special=()))


class CharacterEstimator:
    """Offline approximation of roughly four characters per token."""

    def __init__(self, chars_per_token: int = 4) -> None:
        self.chars_per_token = max(1, chars_per_token)

    def count(self, text: str) -> int:
        return math.ceil(len(text) / self.chars_per_token)
