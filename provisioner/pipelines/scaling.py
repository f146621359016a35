"""
Scaling operations on a RUNNING provision: more hosts, more IPs.
"""

import logging
from functools import partial
from typing import TYPE_CHECKING, List, Optional

from ..errors import PipelineError, PreconditionError
from ..models import ProvisionState, ResourceKind
from ..retry import StepOutcome
from ..template import HostDeclaration
from .creation import CreationPipeline

if TYPE_CHECKING:
    from ..provision import Provision

logger = logging.getLogger(__name__)

ELASTIC_VN_MAD = "elastic"


class ScalingOperations:
    """Grow the host set or the address pool of an existing provision."""

    def __init__(self, provision: "Provision"):
        self.provision = provision
        self.services = provision.services
        self.runner = provision.runner
        self.creation = CreationPipeline(provision)
        self.stencil: Optional[HostDeclaration] = None

    def _require_running(self, what: str) -> None:
        if self.provision.state is not ProvisionState.RUNNING:
            raise PreconditionError(
                f"Can't add {what} to provision in {self.provision.state_str}, expected RUNNING"
            )

    def add_hosts(self, amount: Optional[int] = None, hostnames: Optional[List[str]] = None) -> None:
        """
        Create, deploy and configure new hosts modelled on the first one.

        Args:
            amount: Number of hosts, named edge-host<index>
            hostnames: Explicit hostnames (on premise providers); wins over amount

        Raises:
            PreconditionError: If the provision is not RUNNING or has no hosts
            PipelineError: If host creation or configuration failed
        """
        provision = self.provision
        self._require_running("hosts")

        if not hostnames and not amount:
            raise PreconditionError("Either an amount or a list of hostnames is required")

        if not provision.hosts:
            raise PreconditionError(f"Provision {provision.id} has no hosts to replicate")

        self.runner.reset()
        provision._set_state(ProvisionState.DEPLOYING)
        provision.persist()

        logger.info("Adding more hosts")
        logger.warning("This operation can take tens of minutes. Please be patient.")

        label = "Failed to read the first host"
        self._settle(self.runner.run(label, self._load_stencil), label)
        stencil = self.stencil

        cluster_id = provision.cluster.id
        context = provision.evaluation_context()

        start = len(provision.hosts)
        if hostnames:
            names = list(hostnames)
        else:
            names = [f"edge-host{i}" for i in range(start, start + amount)]

        for index, hostname in enumerate(names, start=start):
            declaration = stencil.specialize(index=index, provision_id=provision.id, hostname=hostname)
            self._settle(self.runner.run(
                "Failed to create some host",
                partial(self.creation.create_host, declaration, cluster_id, stencil.ansible_playbook, context),
            ), "Failed to create some host")

        logger.info("Deploying")
        self._settle(
            self.runner.run("Failed to deploy hosts", self._run_add_hosts),
            "Failed to deploy hosts",
        )

        if not provision.configure_resources():
            raise PipelineError(f"Failed to configure new hosts of provision {provision.id}", "configure")

    def _load_stencil(self) -> None:
        # Current host template is the stencil for the new ones
        provision = self.provision
        first = provision.object(ResourceKind.HOSTS, provider=provision.provider).info(provision.hosts[0].id)
        self.stencil = HostDeclaration.from_remote(first.template)

    def _run_add_hosts(self) -> None:
        output = self.services.deployer.add_hosts(self.provision, self.provision.automation)
        self.creation.apply_deployment(output)

    def _settle(self, outcome: StepOutcome, label: str) -> None:
        if outcome.proceeds:
            return

        self.provision._set_state(ProvisionState.ERROR)
        self.provision.persist()
        raise PipelineError(f"{label}: {self.runner.last_error}", label, outcome)

    def add_ips(self, amount: int) -> None:
        """
        Add address ranges to the first network, built from the saved ar_template.

        Raises:
            PreconditionError: If the provision is not RUNNING, has no networks,
                no address range template, or its first network is not elastic
            RemoteError: On the first address range that cannot be added
        """
        provision = self.provision
        self._require_running("IPs")

        if not provision.networks:
            raise PreconditionError(f"Provision {provision.id} has no networks")

        if not provision.ar_template:
            raise PreconditionError(f"Provision {provision.id} has no address range template")

        network_id = provision.networks[0].id
        vnet = provision.object(ResourceKind.NETWORKS).info(network_id)

        if vnet.vn_mad != ELASTIC_VN_MAD:
            raise PreconditionError(f"Can't add IPs to network, wrong VN_MAD '{vnet.vn_mad}'")

        logger.info(f"Adding more IPs to network {network_id}")

        for _ in range(amount):
            self.services.control_plane.add_address_range(network_id, provision.ar_template)
