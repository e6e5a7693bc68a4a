from .sampling import RandomSource, SecureRandomSource, TICKET_ALPHABET
from .selection import DrawnWinner, select_winners

__all__ = [
    "DrawnWinner",
    "RandomSource",
    "SecureRandomSource",
    "TICKET_ALPHABET",
    "select_winners",
]
