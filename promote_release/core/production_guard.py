"""Production configuration guard: enforces hard constraints in production.

The guard validates that production-critical settings are correctly
configured before any promotion starts.  It fails hard (raises
``ConfigurationError``) if any constraint is violated.

This module is the single enforcement point for production invariants.
Other code should not scatter ``if is_production`` checks.
"""

from __future__ import annotations

import logging

from promote_release.config import PromoteConfig
from promote_release.errors import ConfigurationError

logger = logging.getLogger(__name__)


def enforce_production_constraints(config: PromoteConfig) -> None:
    """Validate all production-critical configuration constraints.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. The filesystem store backend is for local use only.
    3. An expected signing public key must be configured, so a swapped key
       file cannot silently sign releases.
    4. The configured channels must be non-empty and unique.

    Raises
    ------
    ConfigurationError
        If any production constraint is violated.
    """
    if not config.is_production:
        return

    violations: list[str] = []

    if config.debug:
        violations.append(
            "debug=True is not allowed in production. "
            "Set PROMOTE_RELEASE_DEBUG=false."
        )

    if config.store_backend == "filesystem":
        violations.append(
            "store_backend=filesystem is not allowed in production. "
            "Set PROMOTE_RELEASE_STORE_BACKEND=s3."
        )

    if not config.signing_public_key:
        violations.append(
            "signing_public_key is required in production. "
            "Set PROMOTE_RELEASE_SIGNING_PUBLIC_KEY."
        )

    if not config.channels or len(set(config.channels)) != len(config.channels):
        violations.append(
            f"channels must be a non-empty list without duplicates, got {config.channels}."
        )

    if violations:
        msg = (
            "Production configuration guard failed.\n"
            + "\n".join(f"  - {v}" for v in violations)
        )
        logger.critical(msg)
        raise ConfigurationError(msg)

    logger.info("Production configuration guard passed.")
