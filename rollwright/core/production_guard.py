"""Production configuration guard — enforces hard constraints in production.

The guard validates that production-critical settings are correctly configured
before any rollout starts.  It runs once when the controller is constructed
and fails hard (raises ``ProductionConfigError``) if any constraint is violated.

This module is the single enforcement point for production invariants.
Other code should not scatter ``if is_production`` checks.
"""

from __future__ import annotations

import logging

from rollwright.config import RolloutSettings

logger = logging.getLogger(__name__)


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated.

    The system cannot safely roll out services in production mode with the
    current configuration.  It must not be caught and ignored.
    """


def enforce_production_constraints(config: RolloutSettings) -> None:
    """Validate all production-critical configuration constraints.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. Automatic rollback must stay enabled by default.
    3. The poll interval must fit inside the health timeout, otherwise a
       rollout would time out before its first follow-up poll.

    Raises
    ------
    ProductionConfigError
        If any production constraint is violated.
    """
    if not config.is_production:
        return

    violations: list[str] = []

    if config.debug:
        violations.append(
            "debug=True is not allowed in production. "
            "Set ROLLWRIGHT_DEBUG=false."
        )

    if not config.auto_rollback:
        violations.append(
            "auto_rollback=False is not allowed as a production default. "
            "Set ROLLWRIGHT_AUTO_ROLLBACK=true and opt out per rollout."
        )

    if config.poll_interval >= config.health_timeout:
        violations.append(
            f"poll_interval ({config.poll_interval}s) must be shorter than "
            f"health_timeout ({config.health_timeout}s)."
        )

    if violations:
        msg = (
            "Production configuration guard failed.\n"
            + "\n".join(f"  - {v}" for v in violations)
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")
