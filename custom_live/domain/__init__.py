"""Domain model for custom-live variants."""

from custom_live.domain.lifecycle import (
    LifecycleState,
    VariantSnapshot,
    check_transition,
    derive_lifecycle,
)
from custom_live.domain.models import (
    Artifact,
    ArtifactKind,
    BranchChoice,
    HistoryHeader,
    PartitionLayout,
    SessionState,
    Variant,
    VariantStatus,
    is_valid_variant_name,
)

__all__ = [
    "Artifact",
    "ArtifactKind",
    "BranchChoice",
    "HistoryHeader",
    "LifecycleState",
    "PartitionLayout",
    "SessionState",
    "Variant",
    "VariantSnapshot",
    "VariantStatus",
    "check_transition",
    "derive_lifecycle",
    "is_valid_variant_name",
]
