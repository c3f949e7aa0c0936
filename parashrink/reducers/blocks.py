"""
Deletes indentation blocks: a line together with everything indented
deeper beneath it.

Works on any indentation-structured text (Python, YAML, outlines). Blocks
are tried innermost-last, top to bottom.
"""

import sys
from typing import Iterator, List

from .protocol import serve, split_lines


def _indent(line: bytes) -> int:
    return len(line) - len(line.lstrip(b" \t"))


def _is_blank(line: bytes) -> bool:
    return not line.strip()


def block_end(lines: List[bytes], head: int) -> int:
    """Index one past the last line belonging to the block headed at head."""
    depth = _indent(lines[head])
    end = head + 1
    last_body = head
    while end < len(lines):
        if _is_blank(lines[end]):
            end += 1
            continue
        if _indent(lines[end]) <= depth:
            break
        last_body = end
        end += 1
    return last_body + 1


def candidates(seed: bytes) -> Iterator[bytes]:
    lines = split_lines(seed)
    for head, line in enumerate(lines):
        if _is_blank(line):
            continue
        end = block_end(lines, head)
        yield b"".join(lines[:head] + lines[end:])


if __name__ == "__main__":
    sys.exit(serve(candidates))
