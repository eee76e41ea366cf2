"""
                        Services Module

Business logic behind the API. Services take an ``AsyncSession``,
decide the transaction boundary and raise ``ServiceError`` subclasses.

Services:
    - lifecycle: order status state machine
    - placement: basket to persisted order
    - catalog: menu items and global variants
    - shop: shop open/closed singleton
    - notifier: live status broker and feeds
    - auth: admin bearer tokens
    - rate_limit: order creation limiter
"""
