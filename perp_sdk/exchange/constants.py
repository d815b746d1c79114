"""
Exchange API constants and endpoint definitions.
"""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Endpoint:
    """API endpoint definition; ``{name}`` placeholders are filled per call."""

    path: str
    method: str = "GET"

    def format(self, **kwargs: str) -> str:
        return self.path.format(**kwargs)


# =============================================================================
# Auth Service
# =============================================================================


class AuthEndpoints(Enum):
    """Authentication service endpoints."""

    NONCE = Endpoint("/auth/nonce", "GET")
    SIGN_IN_SIWE = Endpoint("/auth/user/sign-in/siwe", "POST")
    REFRESH = Endpoint("/auth/refresh", "POST")


# =============================================================================
# Public Endpoints
# =============================================================================


class PublicEndpoints(Enum):
    """Public market endpoints."""

    MARKET_INFO = Endpoint("/api/market", "GET")
    INSTRUMENTS = Endpoint("/api/market/instrument", "GET")
    INSTRUMENTS_METRICS = Endpoint("/api/market/instrument/metrics", "GET")
    COINS = Endpoint("/api/coin", "GET")
    MARKET_DEPTH = Endpoint("/api/market/{instrument}/deep", "GET")
    RECENT_TRADES = Endpoint("/api/market/{instrument}/recent-trades", "GET")


# =============================================================================
# Private Endpoints
# =============================================================================


class PrivateEndpoints(Enum):
    """Account endpoints (require a session)."""

    ME = Endpoint("/api/user/me", "GET")
    FUNDING = Endpoint("/api/market/funding", "GET")
    TRANSFERS = Endpoint("/api/transfer", "GET")
    AVAILABLE_BALANCE = Endpoint("/api/market/available-balance", "GET")
    POWER = Endpoint("/api/market/power", "GET")
    WITHDRAW = Endpoint("/api/withdraw/trading-balance", "POST")

    POSITIONS = Endpoint("/api/position", "GET")
    POSITION_UPDATE = Endpoint("/api/position/{instrument}", "PUT")
    POSITION_CLOSE = Endpoint("/api/position/{instrument}/close", "POST")

    ORDERS = Endpoint("/api/order", "GET")
    OPENED_ORDERS = Endpoint("/api/order/opened", "GET")
    LIMIT_ORDER = Endpoint("/api/order/limit", "POST")
    LIMIT_ORDER_BATCH = Endpoint("/api/order/limit/batch/{instrument}", "POST")
    MARKET_ORDER = Endpoint("/api/order/market", "POST")
    STOP_LIMIT_ORDER = Endpoint("/api/order/stop-limit", "POST")
    REPLACE_LIMIT_ORDER = Endpoint("/api/order/{order_id}/limit", "PUT")
    REPLACE_STOP_LIMIT_ORDER = Endpoint("/api/order/{order_id}/stop-limit", "PUT")
    CANCEL_ORDER = Endpoint("/api/order/{order_id}", "DELETE")
    MASS_CANCEL = Endpoint("/api/order/mass-cancel", "POST")
    MASS_CANCEL_BY_ID = Endpoint("/api/order/mass-cancel-by-id", "POST")

    TPSL = Endpoint("/api/tpsl", "GET")
    TPSL_CREATE = Endpoint("/api/tpsl", "POST")
    TPSL_UPDATE = Endpoint("/api/tpsl/{tpsl_id}", "PUT")
    TPSL_CANCEL = Endpoint("/api/tpsl/{tpsl_id}", "DELETE")


# Depth levels used to seed order book streams
ORDER_BOOK_BEST_LEVELS = 1
ORDER_BOOK_LEVELS = 30
