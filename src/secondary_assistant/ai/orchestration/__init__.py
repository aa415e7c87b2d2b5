"""Trigger handling, call orchestration and the host-facing pipeline."""

from .orchestrator import SecondaryCallOrchestrator
from .pipeline import SecondaryPipeline
from .trigger import Trigger, TriggerDeduplicator, TriggerSignature, TriggerSource

__all__ = [
    "SecondaryCallOrchestrator",
    "SecondaryPipeline",
    "Trigger",
    "TriggerDeduplicator",
    "TriggerSignature",
    "TriggerSource",
]
