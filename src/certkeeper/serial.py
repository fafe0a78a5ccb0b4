"""
Serial Allocator

One counter per CA, kept in a small text file holding the decimal value of
the *next* serial to hand out. Allocation takes an exclusive, non-blocking
``flock`` on the file: a second allocator that finds the lock held fails
immediately instead of waiting.
"""

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path
from typing import Union

from certkeeper.exceptions import SerialAllocationError

logger = logging.getLogger(__name__)

DEFAULT_START_SERIAL = 1


class SerialAllocator:
    """Hands out strictly increasing certificate serials.

    Args:
        serial_file: Path of the counter file.

    Example:
        >>> allocator = SerialAllocator(tmp / "serial")  # doctest: +SKIP
        >>> allocator.initialize(start=1)                # doctest: +SKIP
        >>> allocator.next_serial(), allocator.next_serial()  # doctest: +SKIP
        (1, 2)
    """

    def __init__(self, serial_file: Union[str, Path]) -> None:
        self._path = Path(serial_file)

    @property
    def path(self) -> Path:
        return self._path

    def check_seed(self, start: int, force: bool = False) -> None:
        """Raise if seeding the counter with *start* is not allowed.

        A forced reseed may skip serials ahead but never move the counter
        back, so serials already handed out are never handed out again.

        Raises:
            SerialAllocationError: If *start* is negative, the counter
                already exists and *force* is not set, or *start* is below
                the counter's current value.
        """
        if start < 0:
            raise SerialAllocationError(f"Starting serial must be non-negative, got {start}")
        if not self._path.exists():
            return
        if not force:
            raise SerialAllocationError(
                f"Serial counter already exists at {self._path}; refusing to reseed"
            )
        current = self.peek()
        if start < current:
            raise SerialAllocationError(
                f"Cannot reseed {self._path} to {start}: serials below {current} "
                "may already be issued"
            )

    def initialize(self, start: int = DEFAULT_START_SERIAL, force: bool = False) -> None:
        """Create the counter file seeded with *start*.

        Raises:
            SerialAllocationError: See :meth:`check_seed`.
        """
        self.check_seed(start, force=force)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(f"{start}\n", encoding="utf-8")
        logger.info("Seeded serial counter %s with %d", self._path, start)

    def next_serial(self) -> int:
        """Allocate and return the next serial.

        Raises:
            SerialAllocationError: If the counter file is missing, locked by
                another allocator, or does not hold a decimal number.
        """
        try:
            fd = os.open(self._path, os.O_RDWR)
        except FileNotFoundError as exc:
            raise SerialAllocationError(
                f"Serial counter {self._path} does not exist; initialize the CA first"
            ) from exc
        except OSError as exc:
            raise SerialAllocationError(f"Cannot open serial counter {self._path}: {exc}") from exc

        with os.fdopen(fd, "r+", encoding="utf-8") as f:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as exc:
                raise SerialAllocationError(
                    f"Serial counter {self._path} is locked by another process"
                ) from exc
            try:
                try:
                    text = f.read()
                except UnicodeDecodeError as exc:
                    raise SerialAllocationError(
                        f"Serial counter {self._path} is corrupt: {exc}"
                    ) from exc
                current = _parse_counter(text, self._path)
                f.seek(0)
                f.write(f"{current + 1}\n")
                f.truncate()
                f.flush()
                os.fsync(f.fileno())
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

        logger.info("Allocated serial %d from %s", current, self._path)
        return current

    def peek(self) -> int:
        """Return the next serial without allocating it."""
        try:
            text = self._path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise SerialAllocationError(f"Serial counter {self._path} is corrupt: {exc}") from exc
        except OSError as exc:
            raise SerialAllocationError(f"Cannot read serial counter {self._path}: {exc}") from exc
        return _parse_counter(text, self._path)


def _parse_counter(text: str, path: Path) -> int:
    value = text.strip()
    if not (value.isascii() and value.isdigit()):
        raise SerialAllocationError(f"Serial counter {path} is corrupt: {text!r}")
    return int(value)
