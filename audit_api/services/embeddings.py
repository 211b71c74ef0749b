from __future__ import annotations

import math
import re
from collections import Counter
from typing import List

DEFAULT_DIMENSION = 256
MIN_TOKEN_LENGTH = 3

_TOKEN_SPLIT = re.compile(r"\W+")


def tokenize(text: str) -> List[str]:
    return [token for token in _TOKEN_SPLIT.split(text.lower()) if len(token) >= MIN_TOKEN_LENGTH]


def bucket_for(token: str, dimension: int = DEFAULT_DIMENSION) -> int:
    value = 0
    for char in token:
        value = (value * 31 + ord(char)) % dimension
    return value


def embed_text(text: str, dimension: int = DEFAULT_DIMENSION) -> List[float]:
    """Hashed bag-of-terms vector, L2-normalised when non-zero.

    Unrelated terms may share a bucket; similarity only reflects lexical overlap.
    """
    if dimension <= 0:
        raise ValueError("dimension must be positive")

    vector = [0.0] * dimension
    for token, frequency in Counter(tokenize(text)).items():
        vector[bucket_for(token, dimension)] += frequency

    magnitude = math.sqrt(sum(value * value for value in vector))
    if magnitude > 0:
        vector = [value / magnitude for value in vector]
    return vector
