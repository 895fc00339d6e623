"""promote-release: signed, atomic promotion of toolchain releases.

Moves freshly built release artifacts from a staging object store to the
production distribution store, per release channel:

  - locate staged artifacts and their declared checksums
  - verify every byte against its SHA-256
  - sign artifacts and the manifest with Ed25519 (PyNaCl)
  - build a deterministic manifest per release
  - copy into production, then flip the channel pointer with a
    compare-and-swap, so installers never see a half-published release

Every run is recorded in an append-only, hash-chained SQLite ledger.
"""

__version__ = "0.1.0"
__description__ = "Signed, atomic promotion of toolchain releases across channels"

from promote_release.core.orchestrator import PromotionOrchestrator
from promote_release.cli.app import app as cli

__all__ = ["PromotionOrchestrator", "cli", "__version__"]
