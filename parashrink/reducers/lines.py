"""
Removes one line at a time, last line first.
"""

import sys
from typing import Iterator

from .protocol import serve, split_lines


def candidates(seed: bytes) -> Iterator[bytes]:
    lines = split_lines(seed)
    for i in reversed(range(len(lines))):
        yield b"".join(lines[:i] + lines[i + 1:])


if __name__ == "__main__":
    sys.exit(serve(candidates))
