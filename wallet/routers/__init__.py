"""API routers."""

from wallet.routers.portfolios import router as portfolios_router
from wallet.routers.positions import router as positions_router
from wallet.routers.transactions import router as transactions_router

__all__ = ["portfolios_router", "positions_router", "transactions_router"]
