"""
Reducer side of the candidate protocol.

A reducer is a generator of candidate contents for a seed. serve() feeds
it one request at a time: read a path from stdin, write the next candidate
there, answer with a blank line. When the generator runs dry we exit 0,
which the orchestrator reads as "no more candidates for this seed".
"""

import os
import sys
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, List, Optional


CandidateGenerator = Callable[[bytes], Iterable[bytes]]


def serve(generate: CandidateGenerator,
          argv: Optional[List[str]] = None,
          stdin: Optional[BinaryIO] = None,
          stdout: Optional[BinaryIO] = None) -> int:
    """
    Run a reducer until it is exhausted or the orchestrator hangs up.

    Args:
        generate: Maps seed content to candidate contents, in order
        argv: Arguments; the first is the seed path (default sys.argv[1:])
        stdin: Request stream (default sys.stdin.buffer)
        stdout: Ready-signal stream (default sys.stdout.buffer)

    Returns:
        Process exit status
    """
    argv = sys.argv[1:] if argv is None else argv
    stdin = stdin or sys.stdin.buffer
    stdout = stdout or sys.stdout.buffer

    if len(argv) != 1:
        sys.stderr.write("usage: <reducer> SEED\n")
        return 2

    seed = Path(argv[0]).read_bytes()
    for candidate in generate(seed):
        if candidate == seed:
            continue

        request = stdin.readline()
        if not request:
            # Orchestrator closed the channel
            return 0

        path = Path(os.fsdecode(request.rstrip(b"\r\n")))
        with open(path, "wb") as f:
            f.write(candidate)

        # Only signal once the file is closed
        stdout.write(b"\n")
        stdout.flush()

    return 0


def split_lines(data: bytes) -> List[bytes]:
    """Lines with their terminators kept."""
    return data.splitlines(keepends=True)
