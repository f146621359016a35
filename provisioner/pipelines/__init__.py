"""
Provisioner Pipelines - creation, deletion and scaling of a provision.
"""

from .creation import CreationPipeline
from .deletion import DeletionPipeline
from .scaling import ScalingOperations

__all__ = [
    "CreationPipeline",
    "DeletionPipeline",
    "ScalingOperations",
]
