"""
Provision template declarations.

A template describes the cluster, the infrastructure objects, the host
groups and the virtual resources of one provision. Parsing the source file is
left to the caller; this module validates the parsed data, expands host
groups into individual host declarations and merges user inputs with the
inputs a provider declares.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError
from .models import InputValue, ResourceKind

logger = logging.getLogger(__name__)

# Connection attributes copied from a live host when it is used as a stencil
CONNECTION_ATTRIBUTES = ["private_key", "public_key", "remote_port", "remote_user"]


class ObjectDeclaration(BaseModel):
    """Declaration of one control plane object (datastore, image, template...)."""
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    provision: Dict[str, Any] = Field(default_factory=dict)


class ClusterDeclaration(ObjectDeclaration):
    """The provision cluster, plus existing datastores to attach to it."""
    datastores: List[int] = Field(default_factory=list)


class NetworkDeclaration(ObjectDeclaration):
    """Virtual network; `ar` holds its address ranges."""
    ar: Optional[List[Dict[str, Any]]] = None


class HostProvision(BaseModel):
    """Provision section of a host declaration."""
    model_config = ConfigDict(extra="allow", frozen=True)

    hostname: Optional[str | List[str]] = None
    count: Optional[int] = None
    index: Optional[int] = None
    id: Optional[int] = None
    provider_name: Optional[str] = None


class HostDeclaration(BaseModel):
    """Host group declaration.

    Declarations are immutable; every host created from a group gets its own
    copy through specialize().
    """
    model_config = ConfigDict(extra="allow", frozen=True)

    provision: HostProvision = Field(default_factory=HostProvision)
    connection: Dict[str, Any] = Field(default_factory=dict)
    ansible_playbook: Optional[str] = None

    def specialize(
        self,
        index: int,
        provision_id: Optional[int],
        hostname: Optional[str] = None,
        count: Optional[int] = None,
    ) -> "HostDeclaration":
        """Copy of this declaration for the host at a global index."""
        update: Dict[str, Any] = {"index": index, "id": provision_id}
        if hostname is not None:
            update["hostname"] = hostname
        if count is not None:
            update["count"] = count

        return self.model_copy(
            update={"provision": self.provision.model_copy(update=update, deep=True)},
            deep=True,
        )

    @classmethod
    def from_remote(cls, template: Dict[str, Any]) -> "HostDeclaration":
        """Build a stencil from the template of a host already in the control plane.

        Host specific information (last error, deployment id, hostname) is
        dropped so the stencil can be reused for new hosts.
        """
        data = {
            key.lower(): _lower_keys(value)
            for key, value in template.items()
            if key.upper() != "ERROR"
        }

        provision = dict(data.get("provision") or {})
        provision.pop("deploy_id", None)
        provision.pop("hostname", None)
        data["provision"] = provision

        remote_connection = data.get("provision_connection") or {}
        data["connection"] = {
            attr: remote_connection[attr]
            for attr in CONNECTION_ATTRIBUTES
            if attr in remote_connection
        }

        return cls.model_validate(data)


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): v for k, v in value.items()}
    return value


class ProvisionTemplate(BaseModel):
    """Validated provision template."""
    model_config = ConfigDict(extra="allow")

    name: str
    description: Optional[str] = None
    defaults: Dict[str, Any] = Field(default_factory=dict)
    playbook: Optional[str | List[str]] = None
    inputs: List[InputValue] = Field(default_factory=list)

    cluster: ClusterDeclaration
    datastores: List[ObjectDeclaration] = Field(default_factory=list)
    networks: List[NetworkDeclaration] = Field(default_factory=list)
    hosts: List[HostDeclaration] = Field(default_factory=list)

    images: List[ObjectDeclaration] = Field(default_factory=list)
    marketplaceapps: List[ObjectDeclaration] = Field(default_factory=list)
    templates: List[ObjectDeclaration] = Field(default_factory=list)
    vntemplates: List[ObjectDeclaration] = Field(default_factory=list)
    flowtemplates: List[ObjectDeclaration] = Field(default_factory=list)

    @classmethod
    def load(cls, data: Dict[str, Any]) -> "ProvisionTemplate":
        """Validate already parsed template data.

        Raises:
            ConfigurationError: If the data is not a valid template
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid provision template: {e}") from e

    @classmethod
    def from_file(cls, path: Path) -> "ProvisionTemplate":
        """Load a template stored as JSON."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Template not found: {path}")

        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Template {path} is not valid JSON: {e}") from e

        return cls.load(data)

    def declarations(self, kind: ResourceKind) -> List[ObjectDeclaration]:
        """Declared objects for an infrastructure or virtual resource class."""
        return list(getattr(self, ResourceKind(kind).value))

    @property
    def playbooks(self) -> Optional[str]:
        if isinstance(self.playbook, list):
            return ",".join(self.playbook)
        return self.playbook

    def extra(self) -> Dict[str, Any]:
        """Top level keys outside the known schema, copied into the document."""
        return dict(self.model_extra or {})

    def expand_hosts(self, provision_id: Optional[int]) -> List[HostDeclaration]:
        """One declaration per host, with a running zero-based index.

        A group expands through an explicit hostname list or provision.count
        (one host when neither is set).
        """
        expanded = []
        index = 0

        for group in self.hosts:
            hostname = group.provision.hostname
            if isinstance(hostname, list):
                names: Optional[List[str]] = list(hostname)
                count = len(hostname)
            else:
                names = None
                count = group.provision.count or 1

            for i in range(count):
                expanded.append(
                    group.specialize(
                        index=index,
                        provision_id=provision_id,
                        hostname=names[i] if names else None,
                        count=count,
                    )
                )
                index += 1

        logger.debug(f"Expanded {len(self.hosts)} host groups into {len(expanded)} hosts")
        return expanded

    def with_inputs(self, provider_inputs: List[InputValue]) -> "ProvisionTemplate":
        """Copy of the template with provider inputs merged in."""
        return self.model_copy(
            update={"inputs": merge_inputs(self.inputs, provider_inputs)},
            deep=True,
        )


def merge_inputs(
    user_inputs: List[InputValue],
    provider_inputs: Optional[List[InputValue]],
) -> List[InputValue]:
    """Merge provider declared inputs into the user supplied ones.

    Provider inputs keep their declaration but take the user value when the
    names collide. User inputs the provider does not declare are kept first.

    Example:
        user:     [a=1, b=2]
        provider: [b (default 5), c (default 3)]
        result:   [a=1, b=2, c=3]
    """
    if not provider_inputs:
        return [i.model_copy(deep=True) for i in user_inputs]

    remaining = [i.model_copy(deep=True) for i in user_inputs]
    merged = []

    for declared in provider_inputs:
        declared = declared.model_copy(deep=True)
        match = next((i for i in remaining if i.name == declared.name), None)

        if match is not None:
            declared.value = match.value
            remaining.remove(match)

        merged.append(declared)

    return remaining + merged


def read_provider(template: ProvisionTemplate) -> Optional[str]:
    """Provider name from the template defaults or, failing that, the first host."""
    provider = None

    defaults = template.defaults.get("provision")
    if isinstance(defaults, dict):
        provider = defaults.get("provider_name")

    if not provider and template.hosts:
        provider = template.hosts[0].provision.provider_name

    return provider
