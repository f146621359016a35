"""
Centralized Pydantic models for the provisioner.

This module contains the data shared by every pipeline:
- Provision states and the closed set of object classes
- The provision document persisted in the document store
- Snapshots of remote objects and results returned by collaborators
"""

from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Core Enums
# =============================================================================

class ProvisionState(IntEnum):
    """Provision lifecycle states, stored as their ordinal."""
    PENDING = 0
    DEPLOYING = 1
    CONFIGURING = 2
    RUNNING = 3
    ERROR = 4
    DELETING = 5


class ResourceKind(str, Enum):
    """Object classes a provision can track."""
    CLUSTERS = "clusters"
    DATASTORES = "datastores"
    NETWORKS = "networks"
    HOSTS = "hosts"
    IMAGES = "images"
    MARKETPLACEAPPS = "marketplaceapps"
    TEMPLATES = "templates"
    VNTEMPLATES = "vntemplates"
    FLOWTEMPLATES = "flowtemplates"

    @property
    def singular(self) -> str:
        return self.value[:-1]


class SkipMode(str, Enum):
    """What the creation pipeline leaves out."""
    NONE = "none"                   # deploy and configure
    CONFIGURATION = "config"        # deploy, enable hosts without configuring
    ALL = "all"                     # only create control plane objects


class ObjectOperation(str, Enum):
    """Single-object mutations accepted by update_objects."""
    APPEND = "append"
    REMOVE = "remove"


# Creation order matters, objects without dependencies go first
RESOURCES: List[ResourceKind] = [
    ResourceKind.IMAGES,
    ResourceKind.MARKETPLACEAPPS,
    ResourceKind.TEMPLATES,
    ResourceKind.VNTEMPLATES,
    ResourceKind.FLOWTEMPLATES,
]

INFRASTRUCTURE_RESOURCES: List[ResourceKind] = [
    ResourceKind.DATASTORES,
    ResourceKind.NETWORKS,
]

FULL_CLUSTER: List[ResourceKind] = INFRASTRUCTURE_RESOURCES + [
    ResourceKind.HOSTS,
    ResourceKind.CLUSTERS,
]

DUMMY_PROVIDER_NAME = "dummy"


def kind_key(kind: ResourceKind | str) -> str:
    """Normalize an object class to the key used inside the document."""
    return ResourceKind(kind).value


def is_infrastructure(kind: ResourceKind | str) -> bool:
    """True when the class lives in the infrastructure section."""
    return ResourceKind(kind) in FULL_CLUSTER


# =============================================================================
# Provider and template evaluation
# =============================================================================

class InputValue(BaseModel):
    """User input declared by a template or a provider."""
    model_config = ConfigDict(extra="allow")

    name: str
    type: Optional[str] = None
    value: Any = None
    description: Optional[str] = None


class ProviderIdentity(BaseModel):
    """Infrastructure provider a provision is deployed on."""
    id: int
    name: str
    inputs: List[InputValue] = Field(default_factory=list)


DUMMY_PROVIDER = ProviderIdentity(id=-1, name=DUMMY_PROVIDER_NAME)


class EvaluationContext(BaseModel):
    """Values available to template rule evaluation."""
    model_config = ConfigDict(frozen=True)

    provision_id: int
    provision_name: str
    provider: ProviderIdentity
    inputs: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Provision document
# =============================================================================

class ObjectRef(BaseModel):
    """Reference to an object in the remote control plane."""
    id: int
    name: Optional[str] = None


class AutomationState(BaseModel):
    """Opaque state and configuration produced by the deployment driver."""
    state: Any = None
    conf: Any = None

    @property
    def is_complete(self) -> bool:
        """Both blobs are required for the pair to be usable."""
        return self.state is not None and self.conf is not None


class ProvisionObjects(BaseModel):
    """Objects tracked by a provision, split by section."""
    infrastructure: Dict[str, List[ObjectRef]] = Field(default_factory=dict)
    resource: Dict[str, List[ObjectRef]] = Field(default_factory=dict)

    def section(self, kind: ResourceKind | str) -> Dict[str, List[ObjectRef]]:
        if is_infrastructure(kind):
            return self.infrastructure
        return self.resource

    def objects(self, kind: ResourceKind | str) -> Optional[List[ObjectRef]]:
        """Tracked references for a class, None if the class was never created."""
        return self.section(kind).get(kind_key(kind))

    def ensure(self, kind: ResourceKind | str) -> List[ObjectRef]:
        return self.section(kind).setdefault(kind_key(kind), [])

    def append(self, kind: ResourceKind | str, ref: ObjectRef) -> None:
        self.ensure(kind).append(ref)

    def remove(self, kind: ResourceKind | str, object_id: int | str) -> bool:
        """Drop every reference whose id matches; returns whether any was found."""
        refs = self.objects(kind)
        if not refs:
            return False

        kept = [ref for ref in refs if str(ref.id) != str(object_id)]
        removed = len(kept) != len(refs)
        refs[:] = kept
        return removed


class ProvisionDocument(BaseModel):
    """Body of the provision document.

    Keys from the template that the provisioner does not know about are kept
    verbatim (extra="allow") so they survive every persist.
    """
    model_config = ConfigDict(extra="allow")

    name: str
    description: Optional[str] = None
    start_time: int = 0
    state: ProvisionState = ProvisionState.PENDING
    provider: str = DUMMY_PROVIDER_NAME
    inputs: List[InputValue] = Field(default_factory=list)
    provision: ProvisionObjects = Field(default_factory=ProvisionObjects)
    tf: Optional[AutomationState] = None
    ar_template: Optional[Dict[str, Any]] = None


# =============================================================================
# Collaborator results
# =============================================================================

class RemoteObject(BaseModel):
    """Snapshot of an object read from the control plane.

    `attributes` carries monitoring values (running VMs, images, network
    driver); `template` is the object's own template with upper-case keys.
    """
    id: int
    name: str
    kind: Optional[ResourceKind] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    template: Dict[str, Any] = Field(default_factory=dict)

    @property
    def running_vms(self) -> int:
        return int(self.attributes.get("running_vms", 0))

    @property
    def vm_ids(self) -> List[int]:
        return [int(i) for i in self.attributes.get("vm_ids", [])]

    @property
    def image_ids(self) -> List[int]:
        return [int(i) for i in self.attributes.get("image_ids", [])]

    @property
    def vn_mad(self) -> Optional[str]:
        return self.attributes.get("vn_mad")

    @property
    def deploy_id(self) -> Optional[str]:
        return (self.template.get("PROVISION") or {}).get("DEPLOY_ID")


class DeploymentOutput(BaseModel):
    """What the deployment driver returns after deploy or add_hosts."""
    addresses: List[str] = Field(default_factory=list)
    deploy_ids: Optional[List[str]] = None
    state: Any = None
    conf: Any = None

    @property
    def automation(self) -> Optional[AutomationState]:
        automation = AutomationState(state=self.state, conf=self.conf)
        return automation if automation.is_complete else None


class MarketplaceResult(BaseModel):
    """Objects a marketplace app materializes into."""
    image: Optional[ObjectRef] = None
    template: Optional[ObjectRef] = None
