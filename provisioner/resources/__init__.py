"""
Provisioner Resources - handle contracts for control plane objects.
"""

from .base import (
    RESOURCE_VARIANTS,
    ClusterResource,
    HostResource,
    InfrastructureResource,
    MarketplaceAppResource,
    Resource,
    VirtualResource,
)

__all__ = [
    "RESOURCE_VARIANTS",
    "ClusterResource",
    "HostResource",
    "InfrastructureResource",
    "MarketplaceAppResource",
    "Resource",
    "VirtualResource",
]
