"""
Dramatiq Actors - Async Job Processing

This module sets up the Dramatiq broker and registers all actors.
The broker is configured to use:
- RedisBroker when REDIS_URL is set (production)
- StubBroker when REDIS_URL is not set (testing/development)

Usage:
    from app.actors import broker
"""

import structlog
from app.config import settings

logger = structlog.get_logger()


def setup_broker():
    """
    Initialize and configure Dramatiq broker.

    Returns:
        Broker instance (RedisBroker or StubBroker)
    """
    import dramatiq

    if settings.redis_url:
        # Production mode - use Redis
        from dramatiq.brokers.redis import RedisBroker

        broker = RedisBroker(
            url=settings.redis_url,
            namespace="placement_matcher",
            heartbeat_timeout=30000,
            dead_message_ttl=86400000
        )
        logger.info("broker_configured", type="RedisBroker", url=settings.redis_url)
    else:
        # Testing/development mode - use StubBroker
        from dramatiq.brokers.stub import StubBroker

        broker = StubBroker()
        logger.info("broker_configured", type="StubBroker", mode="testing")

    dramatiq.set_broker(broker)
    return broker


# Initialize broker at module level
broker = setup_broker()

# Actor imports (registered with broker on import)
from app.actors import recalculation  # noqa: F401,E402

# Export specific actors for convenience
from app.actors.recalculation import recalculate_pivot, run_batch_recalculation  # noqa: F401,E402
