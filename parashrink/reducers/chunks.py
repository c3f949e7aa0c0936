"""
Removes contiguous chunks of lines, halving the chunk size each pass.
"""

import sys
from typing import Iterator

from .protocol import serve, split_lines


def candidates(seed: bytes) -> Iterator[bytes]:
    lines = split_lines(seed)
    size = len(lines) // 2
    while size >= 1:
        for start in range(0, len(lines), size):
            yield b"".join(lines[:start] + lines[start + size:])
        size //= 2


if __name__ == "__main__":
    sys.exit(serve(candidates))
