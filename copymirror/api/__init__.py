"""
Polymarket API Clients
======================
Fill source for watched wallets and the order mirror for the local wallet.
"""

from .fill_source import FillSource, Fill, FetchError, UnauthorizedError, NotFoundError
from .order_mirror import OrderMirror, MirrorOrderRequest, OrderResult, Side, ExecutionError

__all__ = [
    "FillSource", "Fill", "FetchError", "UnauthorizedError", "NotFoundError",
    "OrderMirror", "MirrorOrderRequest", "OrderResult", "Side", "ExecutionError",
]
