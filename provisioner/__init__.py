"""
Provisioner - lifecycle orchestration for cloud provisions.

A provision bundles a cluster, its hosts, datastores and networks, and the
virtual resources built on top of them. The provisioner creates that graph in
dependency order against a remote control plane, lets an operator retry,
skip or abort failing steps, and tears it down again in reverse order.
"""

from .models import ProvisionState, ResourceKind, SkipMode, ObjectOperation
from .provision import Provision
from .settings import ProvisionerSettings, configure_logging, get_settings, reload_settings
from .store import FileDocumentStore

__version__ = "0.1.0"
__all__ = [
    "FileDocumentStore",
    "ObjectOperation",
    "Provision",
    "ProvisionState",
    "ProvisionerSettings",
    "ResourceKind",
    "SkipMode",
    "configure_logging",
    "get_settings",
    "reload_settings",
]
