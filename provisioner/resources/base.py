"""Resource handle variants for control plane objects.

Every object class a provision tracks maps to exactly one variant below.
Concrete handles are supplied by the control plane integration through a
ResourceFactory; the pipelines only depend on these contracts.
"""

import abc
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..models import (
    AutomationState,
    EvaluationContext,
    MarketplaceResult,
    ProviderIdentity,
    RemoteObject,
    ResourceKind,
)

if TYPE_CHECKING:
    from ..provision import Provision


class Resource(abc.ABC):
    """Handle on one control plane object.

    Attributes:
        kind: Object class of the handle
        template: Declaration the object is (or was) created from
        provider: Provider identity, when the object class needs one
        one: Last snapshot read with info() or produced by create()
    """

    def __init__(
        self,
        kind: ResourceKind,
        template: Optional[Dict[str, Any]] = None,
        provider: Optional[ProviderIdentity] = None,
    ):
        self.kind = ResourceKind(kind)
        self.template = dict(template or {})
        self.provider = provider
        self.one: Optional[RemoteObject] = None

    @property
    def name(self) -> Optional[str]:
        if self.one is not None:
            return self.one.name
        return self.template.get("name")

    @abc.abstractmethod
    def info(self, object_id: int) -> RemoteObject:
        """Read the object from the control plane and keep it in `one`.

        Raises:
            RemoteError: If the object cannot be read
        """
        pass

    @abc.abstractmethod
    def delete(
        self,
        force: bool,
        provision: "Provision",
        automation: Optional[AutomationState] = None,
    ) -> Optional[AutomationState]:
        """Delete the object read by the last info() call.

        Hosts deployed by the deployment driver may need `automation` to
        release their addressing; the updated automation state is returned.
        """
        pass

    @abc.abstractmethod
    def evaluate_rules(self, context: EvaluationContext) -> None:
        """Expand template placeholders (provision id, name, provider)."""
        pass

    @abc.abstractmethod
    def template_chown(self, declaration: Dict[str, Any]) -> None:
        """Apply ownership declared in the template to the created object."""
        pass

    @abc.abstractmethod
    def template_chmod(self, declaration: Dict[str, Any]) -> None:
        """Apply permissions declared in the template to the created object."""
        pass


class ClusterResource(Resource):
    """Cluster grouping every object of a provision."""

    @abc.abstractmethod
    def create(self) -> int:
        pass

    @abc.abstractmethod
    def add_datastore(self, datastore_id: int) -> None:
        pass


class InfrastructureResource(Resource):
    """Datastores and virtual networks, created inside the cluster."""

    @abc.abstractmethod
    def create(self, cluster_id: int) -> int:
        pass


class HostResource(Resource):
    """Hypervisor hosts."""

    @abc.abstractmethod
    def render_deployment(self) -> str:
        """Deployment descriptor handed to the control plane on create."""
        pass

    @abc.abstractmethod
    def create(self, deployment: str, cluster_id: int, playbooks: Optional[str]) -> RemoteObject:
        pass


class VirtualResource(Resource):
    """Images, VM templates, network templates and flow templates."""

    @abc.abstractmethod
    def create(self) -> int:
        pass


class MarketplaceAppResource(Resource):
    """Marketplace app, exported into an image and/or a VM template."""

    @abc.abstractmethod
    def create(self) -> MarketplaceResult:
        pass


RESOURCE_VARIANTS: Dict[ResourceKind, type] = {
    ResourceKind.CLUSTERS: ClusterResource,
    ResourceKind.DATASTORES: InfrastructureResource,
    ResourceKind.NETWORKS: InfrastructureResource,
    ResourceKind.HOSTS: HostResource,
    ResourceKind.IMAGES: VirtualResource,
    ResourceKind.MARKETPLACEAPPS: MarketplaceAppResource,
    ResourceKind.TEMPLATES: VirtualResource,
    ResourceKind.VNTEMPLATES: VirtualResource,
    ResourceKind.FLOWTEMPLATES: VirtualResource,
}
