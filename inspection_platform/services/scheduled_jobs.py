"""
Concrete scheduled jobs.

Jobs:
    - inspection_sweep: create every recurring inspection instance that is
      due and missing (see recurrence_scheduler.run_scheduled_sweep)
"""

from __future__ import annotations

import logging
from typing import Any

from inspection_platform.services.recurrence_scheduler import run_scheduled_sweep
from inspection_platform.services.scheduler_service import register_job
from inspection_platform.utils.helpers import utcnow

logger = logging.getLogger(__name__)


@register_job("inspection_sweep")
def run_inspection_sweep(app) -> dict[str, Any]:
    """Create missing recurring inspection instances."""
    result = run_scheduled_sweep(
        utcnow(),
        buffer_days=app.config.get("STATUS_BUFFER_DAYS"),
        deadline_seconds=app.config.get("SWEEP_DEADLINE_SECONDS"),
    )
    if result.has_failures:
        logger.warning("inspection_sweep finished with %d failed pair(s)", len(result.failures))
    return result.to_dict()
