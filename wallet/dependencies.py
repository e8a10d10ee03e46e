"""FastAPI dependencies shared by the routers."""

from fastapi import Request

from wallet.services.price_feed import PriceFeed


def get_price_feed(request: Request) -> PriceFeed:
    """The price feed created at startup (see main.lifespan).

    Tests override this dependency with a fake feed.
    """
    return request.app.state.price_feed
