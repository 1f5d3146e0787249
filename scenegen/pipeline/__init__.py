"""Document pipeline: leases, retry policy, stage processors and the controller."""

from .controller import Outcome, PipelineController, PipelineHandle
from .lease import LeaseManager, MemoryLeaseManager, RedisLeaseManager, lease_key
from .retry import PollBackoff, RetryDecision, RetryPolicy
from .stages import MediaGeneration, RoleExtraction, SceneExtraction, StageProcessor

__all__ = [
    # Controller
    "PipelineController",
    "PipelineHandle",
    "Outcome",
    # Leases
    "LeaseManager",
    "RedisLeaseManager",
    "MemoryLeaseManager",
    "lease_key",
    # Retry
    "RetryPolicy",
    "RetryDecision",
    "PollBackoff",
    # Stages
    "StageProcessor",
    "RoleExtraction",
    "SceneExtraction",
    "MediaGeneration",
]
