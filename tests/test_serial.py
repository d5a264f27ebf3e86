# tests/test_serial.py
import fcntl

import pytest

from localca.common.errors import MissingCAError, PersistenceError, SigningError
from localca.common.utils import hex_to_serial, serial_to_hex
from localca.storage.serial import MAX_SERIAL, SerialState


@pytest.fixture
def state(tmp_path):
    return SerialState(str(tmp_path / "rootCA.srl"), str(tmp_path / "rootCA.db"))


def test_hex_format():
    assert serial_to_hex(0xABC) == "0ABC"
    assert serial_to_hex(255) == "FF"
    assert hex_to_serial("0abc\n") == 0xABC
    assert hex_to_serial("0A:BC") == 0xABC


def test_initialize_is_random_and_never_resets(state):
    assert state.initialize() is True
    first = state.read()
    assert 0 < first < (1 << 128)
    assert state.initialize() is False
    assert state.read() == first


def test_missing_file(state):
    with pytest.raises(MissingCAError):
        state.read()


def test_garbage_file(state):
    with open(state.path, "w") as f:
        f.write("not hex\n")
    with pytest.raises(PersistenceError):
        state.read()


def test_reserve_advances(state):
    state.write(0x10)
    with state.reserve() as nxt:
        assert nxt == 0x11
    assert state.read() == 0x11
    with open(state.path) as f:
        assert f.read() == "11\n"


def test_failed_block_consumes_nothing(state):
    state.write(0x10)
    with pytest.raises(RuntimeError):
        with state.reserve():
            raise RuntimeError("signing blew up")
    assert state.read() == 0x10


def test_serial_space_exhausted(state):
    state.write(MAX_SERIAL)
    with pytest.raises(SigningError, match="exhausted"):
        with state.reserve():
            pass


def test_lock_timeout(state):
    state.write(1)
    state.lock_timeout = 0.2
    with open(state.lock_path, "a+") as holder:
        fcntl.flock(holder.fileno(), fcntl.LOCK_EX)
        try:
            with pytest.raises(PersistenceError, match="timed out"):
                with state.reserve():
                    pass
        finally:
            fcntl.flock(holder.fileno(), fcntl.LOCK_UN)
    assert state.read() == 1
