"""Cryptographically secure randomness for ticket numbers and draws."""

from __future__ import annotations

import secrets
import string
from typing import Protocol

TICKET_ALPHABET = string.digits + string.ascii_uppercase


class RandomSource(Protocol):
    """Bounded integer source used for ticket numbers and draw indices.

    Production code uses :class:`SecureRandomSource`; tests may substitute a
    scripted source to make drawings reproducible.
    """

    selection_method: str
    """Label stored in the audit trail for winners drawn with this source."""

    def randbelow(self, upper: int) -> int:
        ...

    def ticket_number(self, length: int) -> str:
        ...

    def transaction_id(self) -> str:
        ...


class SecureRandomSource:
    """:class:`RandomSource` backed by the operating system CSPRNG.

    ``randbelow`` uses rejection sampling over raw random bytes: a candidate
    is drawn from the smallest power-of-two range covering ``upper`` and
    discarded when it falls outside ``[0, upper)``. Every accepted value is
    therefore exactly uniform, with fewer than two draws on average.
    """

    selection_method = "CRYPTOGRAPHIC_RANDOM"

    def randbelow(self, upper: int) -> int:
        """Return a uniform integer in ``[0, upper)``.

        Parameters
        ----------
        upper : int
            Exclusive upper bound. Must be positive.
        """
        if not isinstance(upper, int) or isinstance(upper, bool):
            raise TypeError("upper must be an int")
        if upper <= 0:
            raise ValueError("upper must be positive")
        if upper == 1:
            return 0

        bits = (upper - 1).bit_length()
        n_bytes = (bits + 7) // 8
        mask = (1 << bits) - 1
        while True:
            candidate = int.from_bytes(secrets.token_bytes(n_bytes), "big") & mask
            if candidate < upper:
                return candidate

    def ticket_number(self, length: int) -> str:
        """Return ``length`` characters drawn uniformly from ``[0-9A-Z]``."""
        if length <= 0:
            raise ValueError("length must be positive")
        return "".join(
            TICKET_ALPHABET[self.randbelow(len(TICKET_ALPHABET))] for _ in range(length)
        )

    def transaction_id(self) -> str:
        """Return a 32 character hex identifier for an internal transaction."""
        return secrets.token_hex(16)


__all__ = ["RandomSource", "SecureRandomSource", "TICKET_ALPHABET"]
