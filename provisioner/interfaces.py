"""
Contracts of the collaborators a provision talks to.

The control plane, the automation drivers and the document store are
external systems; the provisioner only needs the calls listed here.
Every call may raise RemoteError on a transient failure.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, Tuple

from .models import (
    AutomationState,
    DeploymentOutput,
    ObjectRef,
    ProviderIdentity,
    ResourceKind,
)

if TYPE_CHECKING:
    from .provision import Provision
    from .resources.base import Resource


class DocumentStore(Protocol):
    """Versioned JSON document store with optimistic locking."""

    def allocate(self, body: Dict[str, Any], name: str) -> Tuple[int, int]:
        """Store a new document, returning its id and first version."""
        ...

    def info(self, document_id: int) -> Tuple[Dict[str, Any], int]:
        """Return the document body and its current version."""
        ...

    def update(self, document_id: int, body: Dict[str, Any], version: int) -> int:
        """Replace the body if `version` is current; returns the new version.

        Raises:
            StaleDocumentError: If the document changed since `version`
        """
        ...

    def delete(self, document_id: int) -> None: ...

    def lock(self, document_id: int) -> None: ...

    def unlock(self, document_id: int) -> None: ...

    def list(self) -> List[Tuple[int, str]]: ...


class ResourceFactory(Protocol):
    """Builds resource handles by object class."""

    def object(
        self,
        kind: ResourceKind,
        provider: Optional[ProviderIdentity] = None,
        template: Optional[Dict[str, Any]] = None,
    ) -> "Resource": ...


class ControlPlane(Protocol):
    """Operations on live control plane objects outside the handle contract."""

    def update_host(self, host_id: int, name: str, deploy_id: Optional[str]) -> None:
        """Rename a host and record its deployment id."""
        ...

    def offline_host(self, host_id: int) -> None: ...

    def enable_host(self, host_id: int) -> None: ...

    def delete_vm(self, vm_id: int) -> None: ...

    def vm_state(self, vm_id: int) -> str: ...

    def delete_image(self, image_id: int) -> None: ...

    def image_exists(self, image_id: int) -> bool: ...

    def add_address_range(self, network_id: int, ar_template: Dict[str, Any]) -> None: ...


class DeploymentDriver(Protocol):
    """Infrastructure automation (Terraform) driver."""

    def deploy(self, provision: "Provision") -> DeploymentOutput: ...

    def add_hosts(
        self, provision: "Provision", automation: Optional[AutomationState]
    ) -> DeploymentOutput: ...

    def destroy(self, provision: "Provision", automation: AutomationState) -> None: ...


class ConfigurationDriver(Protocol):
    """Host configuration (Ansible) driver."""

    def check_version(self) -> None:
        """Raise ConfigurationError if the installed tool cannot be used."""
        ...

    def configure(
        self,
        hosts: List[ObjectRef],
        datastores: List[ObjectRef],
        provision: "Provision",
    ) -> int:
        """Configure hosts; 0 on success."""
        ...


class ProviderCatalog(Protocol):
    """Lookup of registered providers."""

    def by_name(self, name: str) -> Optional[ProviderIdentity]: ...


@dataclass
class ProvisionServices:
    """Collaborators shared by every operation on a provision."""

    factory: ResourceFactory
    control_plane: ControlPlane
    deployer: DeploymentDriver
    configurator: ConfigurationDriver
    providers: ProviderCatalog
