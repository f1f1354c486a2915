"""Stratus data models — re-export all models for convenient imports."""

from .membership import Membership
from .resource import ManagedResource
from .sequence import ResourceSequence

__all__ = [
    "ManagedResource",
    "Membership",
    "ResourceSequence",
]
