"""
Tests for the reducer session protocol against real processes.
"""

import pytest

from parashrink.errors import ChannelBroken, ProtocolViolation
from parashrink.execution.session import ReducerSession, SessionState


# Offers three candidates, each one byte shorter than the last, then exits.
OFFER_THREE = """
    import sys
    seed = open(sys.argv[1], "rb").read()
    for i in range(3):
        line = sys.stdin.readline()
        if not line:
            sys.exit(0)
        with open(line.rstrip("\\n"), "wb") as f:
            f.write(seed[: len(seed) - i - 1])
        sys.stdout.write("\\n")
        sys.stdout.flush()
"""

CRASH_MID_REQUEST = """
    import sys
    sys.stdin.readline()
    sys.exit(3)
"""

CHATTY = """
    import sys
    line = sys.stdin.readline()
    open(line.rstrip("\\n"), "wb").write(b"x")
    sys.stdout.write("done\\n")
    sys.stdout.flush()
    sys.stdin.readline()
"""

READY_WITHOUT_FILE = """
    import sys
    sys.stdin.readline()
    sys.stdout.write("\\n")
    sys.stdout.flush()
    sys.stdin.readline()
"""

NOTHING_TO_OFFER = """
    import sys
    sys.exit(0)
"""

MAKES_DIRECTORY = """
    import os
    import sys
    line = sys.stdin.readline()
    os.mkdir(line.rstrip("\\n"))
    sys.stdout.write("\\n")
    sys.stdout.flush()
    sys.stdin.readline()
"""


@pytest.fixture
def seed(tmp_path):
    path = tmp_path / "seed.txt"
    path.write_bytes(b"abcdefgh")
    return path


def _session(command, seed, generation=0):
    session = ReducerSession(0, command, shutdown_timeout=5.0)
    session.start(seed, generation)
    return session


def test_candidates_then_exhaustion(script, seed, tmp_path):
    """Test a reducer offering candidates until it exits."""
    session = _session(script("offer_three", OFFER_THREE), seed)
    try:
        contents = []
        for i in range(3):
            path = tmp_path / f"candidate-{i}"
            assert session.generate(path) is True
            assert session.state is SessionState.AWAITING_RESULT
            contents.append(path.read_bytes())
            session.release()
            assert session.state is SessionState.IDLE

        assert contents == [b"abcdefg", b"abcdef", b"abcde"]
        assert session.generate(tmp_path / "candidate-3") is False
        assert session.state is SessionState.EXHAUSTED
        assert session.active
        assert session.candidates_produced == 3
    finally:
        session.close()


def test_exhausted_session_is_not_asked_again(script, seed, tmp_path):
    """Test that an exhausted session stays exhausted."""
    session = _session(script("nothing", NOTHING_TO_OFFER), seed)
    try:
        assert session.generate(tmp_path / "c0") is False
        assert session.generate(tmp_path / "c1") is False
        assert session.state is SessionState.EXHAUSTED
    finally:
        session.close()


def test_crash_mid_request_is_channel_broken(script, seed, tmp_path):
    """A nonzero exit mid-request breaks the channel."""
    session = _session(script("crash", CRASH_MID_REQUEST), seed)

    with pytest.raises(ChannelBroken, match="status 3"):
        session.generate(tmp_path / "c0")

    assert session.state is SessionState.FAILED
    assert not session.active
    assert isinstance(session.error, ChannelBroken)
    with pytest.raises(ProtocolViolation):
        session.generate(tmp_path / "c1")


def test_non_blank_ready_signal_is_violation(script, seed, tmp_path):
    """Anything but a blank ready line is a violation."""
    session = _session(script("chatty", CHATTY), seed)

    with pytest.raises(ProtocolViolation, match="blank ready line"):
        session.generate(tmp_path / "c0")

    assert session.state is SessionState.FAILED


def test_ready_without_candidate_is_violation(script, seed, tmp_path):
    """A ready signal without a candidate file is a violation."""
    session = _session(script("no_file", READY_WITHOUT_FILE), seed)

    with pytest.raises(ProtocolViolation, match="wrote no candidate"):
        session.generate(tmp_path / "c0")

    assert session.state is SessionState.FAILED


def test_directory_instead_of_candidate_is_violation(script, seed, tmp_path):
    """A directory at the candidate path is not a candidate."""
    session = _session(script("makes_dir", MAKES_DIRECTORY), seed)

    with pytest.raises(ProtocolViolation, match="no candidate file"):
        session.generate(tmp_path / "c0")

    assert session.state is SessionState.FAILED
    assert (tmp_path / "c0").is_dir()


def test_pipelined_request_is_violation(script, seed, tmp_path):
    """A second request before releasing the first is a violation."""
    session = _session(script("offer_three", OFFER_THREE), seed)
    try:
        assert session.generate(tmp_path / "c0") is True
        # No release(): the previous candidate is still outstanding.
        with pytest.raises(ProtocolViolation, match="outstanding"):
            session.generate(tmp_path / "c1")
        assert session.state is SessionState.FAILED
    finally:
        session.close()


def test_restart_reseeds_process(script, seed, tmp_path):
    """Test that restart starts a process on the new seed."""
    session = _session(script("offer_three", OFFER_THREE), seed)
    try:
        assert session.generate(tmp_path / "c0") is True
        session.release()

        smaller = tmp_path / "seed-1.txt"
        smaller.write_bytes(b"abcd")
        session.restart(smaller, generation=1)

        assert session.generation == 1
        assert session.seed_path == smaller
        assert session.generate(tmp_path / "c1") is True
        assert (tmp_path / "c1").read_bytes() == b"abc"
    finally:
        session.close()


def test_restart_after_exhaustion(script, seed, tmp_path):
    """Test that an exhausted session can be reseeded."""
    session = _session(script("nothing", NOTHING_TO_OFFER), seed)
    assert session.generate(tmp_path / "c0") is False

    session.restart(seed, generation=1)

    assert session.state is SessionState.IDLE
    assert session.generation == 1
    session.close()


def test_launch_failure_fails_session(seed, tmp_path):
    """Test that an unlaunchable reducer fails its session."""
    session = ReducerSession(0, [str(tmp_path / "no-such-reducer")])

    with pytest.raises(ChannelBroken, match="cannot launch"):
        session.start(seed, 0)

    assert session.state is SessionState.FAILED


def test_close_is_idempotent(script, seed):
    session = _session(script("offer_three", OFFER_THREE), seed)

    session.close()
    session.close()


def test_name_is_full_command():
    session = ReducerSession(4, ["python3", "-m", "parashrink.reducers.lines"])

    assert session.name == "python3 -m parashrink.reducers.lines"
    assert session.state is SessionState.IDLE
    assert session.generation == -1
