"""promote-release data models: all Pydantic v2, all frozen (immutable)."""

from promote_release.models.artifacts import Artifact, Signature, SignedKind
from promote_release.models.channels import (
    DEFAULT_CHANNELS,
    Channel,
    ChannelPointer,
    ObservedPointer,
)
from promote_release.models.ledger import LedgerEntry
from promote_release.models.manifest import (
    MANIFEST_SCHEMA_VERSION,
    Manifest,
    ManifestArtifact,
)
from promote_release.models.release import (
    PromotionRun,
    Release,
    ReleaseCandidate,
    RunFailure,
)
from promote_release.models.reports import (
    ArtifactCheck,
    ChannelVerificationReport,
    PublishResult,
)
from promote_release.models.stages import (
    PIPELINE_ORDER,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    RunState,
    RunTransition,
)

__all__ = [
    # artifacts
    "Artifact",
    "Signature",
    "SignedKind",
    # channels
    "DEFAULT_CHANNELS",
    "Channel",
    "ChannelPointer",
    "ObservedPointer",
    # ledger
    "LedgerEntry",
    # manifest
    "MANIFEST_SCHEMA_VERSION",
    "Manifest",
    "ManifestArtifact",
    # release
    "PromotionRun",
    "Release",
    "ReleaseCandidate",
    "RunFailure",
    # reports
    "ArtifactCheck",
    "ChannelVerificationReport",
    "PublishResult",
    # stages
    "PIPELINE_ORDER",
    "TERMINAL_STATES",
    "VALID_TRANSITIONS",
    "RunState",
    "RunTransition",
]
