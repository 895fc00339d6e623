"""Read-only views of promotion runs and their terminal rendering.

The projection never stores anything; it re-reads the run ledger on every
call.  The renderer turns runs, history and verification reports into
Rich panels and tables.
"""

from promote_release.monitor.projection import RunProjection, RunSummary
from promote_release.monitor.renderer import PromotionRenderer

__all__ = ["PromotionRenderer", "RunProjection", "RunSummary"]
