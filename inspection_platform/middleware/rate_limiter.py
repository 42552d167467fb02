"""
Rate limiting configuration.

The Limiter instance is created in inspection_platform/__init__.py with no
default limits; this module applies per-blueprint limits once blueprints
are registered.

Usage:
    from inspection_platform.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Cron / scheduler: SWEEP_RATE_LIMIT (default 10 per minute)
        - Inspections:      60/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    sweep_limit = app.config.get("SWEEP_RATE_LIMIT", "10 per minute")
    bp = app.blueprints.get("cron")
    if bp:
        limiter.limit(sweep_limit)(bp)

    bp = app.blueprints.get("inspection")
    if bp:
        limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: cron=%s inspections=%s", sweep_limit, WRITE_LIMIT)
