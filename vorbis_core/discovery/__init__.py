"""
Video discovery: exclusion set, content filter and orchestrator.
"""

from .discovery_metadata import (
    AssociationRecord,
    Candidate,
    DiscoveryState,
    EmbedCheck,
    EmbedStatus,
    FailureKind,
    FilterCriteria,
    FilterResult,
    Rejection,
    RejectionReason,
    Resolution,
    ResolutionKind,
    ScoredCandidate,
)
from .exclusion_set import ExclusionSet
from .content_filter import ContentFilter, filter_candidates
from .orchestrator import DiscoveryOrchestrator

__all__ = [
    'AssociationRecord',
    'Candidate',
    'DiscoveryState',
    'EmbedCheck',
    'EmbedStatus',
    'FailureKind',
    'FilterCriteria',
    'FilterResult',
    'Rejection',
    'RejectionReason',
    'Resolution',
    'ResolutionKind',
    'ScoredCandidate',
    'ExclusionSet',
    'ContentFilter',
    'filter_candidates',
    'DiscoveryOrchestrator',
]
