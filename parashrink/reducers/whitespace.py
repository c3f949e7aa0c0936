"""
Normalizes whitespace: strips trailing blanks and drops empty lines.

Offers a single candidate, so it is exhausted once the seed is normalized.
"""

import sys
from typing import Iterator

from .protocol import serve, split_lines


def normalize(seed: bytes) -> bytes:
    kept = []
    for line in split_lines(seed):
        stripped = line.rstrip()
        if stripped:
            kept.append(stripped + b"\n")
    return b"".join(kept)


def candidates(seed: bytes) -> Iterator[bytes]:
    yield normalize(seed)


if __name__ == "__main__":
    sys.exit(serve(candidates))
