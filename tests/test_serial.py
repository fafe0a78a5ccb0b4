"""Tests for the serial allocator."""

import fcntl

import pytest

from certkeeper.exceptions import SerialAllocationError
from certkeeper.serial import SerialAllocator


@pytest.fixture
def allocator(tmp_path):
    alloc = SerialAllocator(tmp_path / "ca" / "serial")
    alloc.initialize(start=1)
    return alloc


class TestInitialize:
    def test_seed_written_as_decimal(self, tmp_path):
        alloc = SerialAllocator(tmp_path / "serial")
        alloc.initialize(start=42)
        assert (tmp_path / "serial").read_text().strip() == "42"
        assert alloc.peek() == 42

    def test_refuses_to_reseed(self, allocator):
        with pytest.raises(SerialAllocationError, match="refusing to reseed"):
            allocator.initialize(start=1)

    def test_force_reseeds(self, allocator):
        allocator.next_serial()
        allocator.initialize(start=100, force=True)
        assert allocator.next_serial() == 100

    def test_force_cannot_move_counter_back(self, allocator):
        allocator.next_serial()
        allocator.next_serial()
        with pytest.raises(SerialAllocationError, match="to 1: serials below 3"):
            allocator.initialize(start=1, force=True)
        assert allocator.next_serial() == 3

    def test_force_with_current_value_is_allowed(self, allocator):
        allocator.next_serial()
        allocator.initialize(start=2, force=True)
        assert allocator.next_serial() == 2

    def test_negative_seed_rejected(self, tmp_path):
        with pytest.raises(SerialAllocationError, match="non-negative"):
            SerialAllocator(tmp_path / "serial").initialize(start=-1)


class TestNextSerial:
    def test_strictly_increasing_from_seed(self, allocator):
        serials = [allocator.next_serial() for _ in range(25)]
        assert serials == list(range(1, 26))

    def test_counter_file_holds_next_value(self, allocator):
        allocator.next_serial()
        allocator.next_serial()
        assert allocator.path.read_text().strip() == "3"

    def test_survives_new_instance(self, allocator):
        allocator.next_serial()
        assert SerialAllocator(allocator.path).next_serial() == 2

    def test_width_growth(self, tmp_path):
        alloc = SerialAllocator(tmp_path / "serial")
        alloc.initialize(start=9)
        assert alloc.next_serial() == 9
        assert alloc.next_serial() == 10
        assert alloc.peek() == 11

    def test_missing_file_is_fatal(self, tmp_path):
        with pytest.raises(SerialAllocationError, match="does not exist"):
            SerialAllocator(tmp_path / "serial").next_serial()

    def test_locked_counter_fails_immediately(self, allocator):
        with open(allocator.path, "r+") as holder:
            fcntl.flock(holder.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            with pytest.raises(SerialAllocationError, match="locked"):
                allocator.next_serial()
        # lock released: allocation works and nothing was consumed
        assert allocator.next_serial() == 1

    def test_corrupt_counter(self, allocator):
        allocator.path.write_text("twelve\n")
        with pytest.raises(SerialAllocationError, match="corrupt"):
            allocator.next_serial()

    def test_undecodable_counter(self, allocator):
        allocator.path.write_bytes(b"\xff\xfe\n")
        with pytest.raises(SerialAllocationError, match="corrupt"):
            allocator.next_serial()
        with pytest.raises(SerialAllocationError, match="corrupt"):
            allocator.peek()
        assert allocator.path.read_bytes() == b"\xff\xfe\n"

    def test_peek_does_not_allocate(self, allocator):
        assert allocator.peek() == 1
        assert allocator.peek() == 1
        assert allocator.next_serial() == 1
