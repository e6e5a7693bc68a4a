from .rate_limit import SlidingWindowRateLimiter
from .service import TicketSalesService

__all__ = ["SlidingWindowRateLimiter", "TicketSalesService"]
