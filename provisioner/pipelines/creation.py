"""
Creation pipeline: cluster → datastores, networks → hosts → deploy →
configure → virtual resources.

Each unit of work runs under the provision's StepRunner and is persisted as
soon as it succeeds, so a failure in the middle of a loop leaves a well
defined, already persisted prefix.
"""

import logging
from functools import partial
from typing import TYPE_CHECKING, Callable, List, Optional

from ..errors import (
    DeletionError,
    PipelineError,
    PreconditionError,
    ProvisionAborted,
    RemoteError,
    StepSkipped,
)
from ..models import (
    INFRASTRUCTURE_RESOURCES,
    RESOURCES,
    DeploymentOutput,
    EvaluationContext,
    MarketplaceResult,
    ObjectRef,
    ProviderIdentity,
    ProvisionState,
    ResourceKind,
    SkipMode,
)
from ..retry import StepOutcome
from ..template import HostDeclaration, ObjectDeclaration, ProvisionTemplate, read_provider

if TYPE_CHECKING:
    from ..provision import Provision

logger = logging.getLogger(__name__)


class CreationPipeline:
    """Builds every object of a provision template in dependency order."""

    def __init__(self, provision: "Provision"):
        self.provision = provision
        self.services = provision.services
        self.runner = provision.runner

    def deploy(
        self,
        template: ProvisionTemplate,
        cleanup: bool = True,
        timeout: Optional[int] = None,
        skip: SkipMode = SkipMode.NONE,
        provider: ProviderIdentity | str | None = None,
    ) -> int:
        """
        Full pipeline for a new provision.

        Args:
            template: Validated provision template
            cleanup: Drain VMs and images if an abort tears the provision down
            timeout: Seconds to wait for each VM/image deletion during that teardown
            skip: Leave out configuration, or deployment and configuration
            provider: Provider identity or name; read from the template when None

        Returns:
            The id of the new provision

        Raises:
            PreconditionError: If no provider can be resolved
            StepSkipped: If the operator skipped the cluster creation
            ProvisionAborted: If the operator asked for cleanup
            PipelineError: If a step failed for good; the provision is in ERROR
        """
        if skip is SkipMode.NONE:
            self.services.configurator.check_version()

        provider = self._resolve_provider(template, provider)
        template = template.with_inputs(provider.inputs)

        self.runner.reset()
        self.provision.allocate(template, provider)
        context = self.provision.evaluation_context()

        logger.info(f"Creating provision objects for provision {self.provision.id}")

        label = "Failed to create cluster"
        outcome = self.runner.run(label, partial(self._create_cluster, template, context))
        if outcome.skipped:
            # Nothing worth keeping without a cluster
            raise StepSkipped(f"{label}: skipped, provision {self.provision.id} not created", label, outcome)
        self._settle(outcome, label, cleanup, timeout)

        stages: List[tuple[str, Callable[[], StepOutcome]]] = [
            ("Failed to create infrastructure resources",
             partial(self._create_resources, template, INFRASTRUCTURE_RESOURCES, context)),
            ("Failed to create hosts",
             partial(self._create_hosts, template, context)),
            ("Failed to deploy hosts",
             partial(self._deploy_hosts, skip)),
            ("Failed to configure hosts",
             partial(self._configure, skip)),
            ("Failed to create virtual resources",
             partial(self._create_resources, template, RESOURCES, context)),
        ]

        for label, stage in stages:
            self.runner.last_error = None
            self._settle(stage(), label, cleanup, timeout)

        self.provision._set_state(ProvisionState.RUNNING)
        self.provision.persist()

        logger.info(f"Provision {self.provision.id} is RUNNING")
        return self.provision.id

    def _resolve_provider(
        self,
        template: ProvisionTemplate,
        provider: ProviderIdentity | str | None,
    ) -> ProviderIdentity:
        if isinstance(provider, ProviderIdentity):
            return provider

        name = provider or read_provider(template)
        if not name:
            raise PreconditionError("No provider found")

        identity = self.services.providers.by_name(name)
        if identity is None:
            raise PreconditionError(f"No provider found with name '{name}'")
        return identity

    def _settle(self, outcome: StepOutcome, label: str, cleanup: bool, timeout: Optional[int]) -> None:
        """Act on an outcome that stops the pipeline."""
        if outcome.proceeds:
            return

        reason = self.runner.last_error or label

        if outcome is StepOutcome.ABORT:
            logger.warning(f"Cleaning up provision {self.provision.id}")
            try:
                self.provision.delete(cleanup=cleanup, timeout=timeout, force=True)
            except DeletionError as e:
                raise ProvisionAborted(f"{label}: {reason}; cleanup incomplete: {e}", label, outcome) from e
            raise ProvisionAborted(f"{label}: {reason}", label, outcome)

        self.provision._set_state(ProvisionState.ERROR)
        self.provision.persist()
        raise PipelineError(f"{label}: {reason}", label, outcome)

    # =========================================================================
    # Cluster and resources
    # =========================================================================

    def _create_cluster(self, template: ProvisionTemplate, context: EvaluationContext) -> None:
        declaration = template.cluster
        logger.debug(f"Creating cluster: {declaration.name}")

        cluster = self.provision.object(
            ResourceKind.CLUSTERS,
            template=declaration.model_dump(exclude={"datastores"}),
        )
        cluster.evaluate_rules(context)
        cluster_id = cluster.create()

        for datastore_id in declaration.datastores:
            cluster.add_datastore(datastore_id)

        self.provision.infrastructure_objects[ResourceKind.CLUSTERS.value] = [
            ObjectRef(id=cluster_id, name=cluster.name)
        ]
        self.provision.persist()

        logger.debug(f"Cluster created with ID: {cluster_id}")

    def _create_resources(
        self,
        template: ProvisionTemplate,
        kinds: List[ResourceKind],
        context: EvaluationContext,
    ) -> StepOutcome:
        """Create every declared object of the given classes, in order."""
        cluster = self.provision.cluster
        if cluster is None:
            raise PreconditionError(f"Provision {self.provision.id} has no cluster")

        for kind in kinds:
            for declaration in template.declarations(kind):
                outcome = self.runner.run(
                    "Failed to create some resources",
                    partial(self._create_resource, kind, declaration, cluster.id, context),
                )
                if not outcome.proceeds:
                    return outcome

                self.provision.persist()

        return StepOutcome.CONTINUE

    def _create_resource(
        self,
        kind: ResourceKind,
        declaration: ObjectDeclaration,
        cluster_id: int,
        context: EvaluationContext,
    ) -> None:
        data = declaration.model_dump()
        data["provision"] = {**data.get("provision", {}), "id": self.provision.id}

        obj = self.provision.object(kind, template=data)
        logger.debug(f"Creating {kind.singular} {declaration.name}")

        obj.evaluate_rules(context)

        if kind in INFRASTRUCTURE_RESOURCES:
            object_id = obj.create(cluster_id)
            self.provision.document.provision.append(kind, ObjectRef(id=object_id, name=obj.name))
        else:
            self._file_virtual_resource(kind, obj.create(), obj.name)

        obj.template_chown(data)
        obj.template_chmod(data)

        if kind is ResourceKind.NETWORKS and getattr(declaration, "ar", None):
            self.provision.document.ar_template = {"ar": dict(declaration.ar[0])}

    def _file_virtual_resource(self, kind: ResourceKind, result: int | MarketplaceResult, name: Optional[str]) -> None:
        objects = self.provision.document.provision

        if isinstance(result, MarketplaceResult):
            # Marketplace apps are turned into an image and/or a VM template
            objects.ensure(ResourceKind.IMAGES)
            objects.ensure(ResourceKind.TEMPLATES)

            if result.image is not None:
                objects.append(ResourceKind.IMAGES, result.image)
            if result.template is not None:
                objects.append(ResourceKind.TEMPLATES, result.template)
            return

        objects.append(kind, ObjectRef(id=result, name=name))

    # =========================================================================
    # Hosts
    # =========================================================================

    def _create_hosts(self, template: ProvisionTemplate, context: EvaluationContext) -> StepOutcome:
        if not template.hosts:
            return StepOutcome.CONTINUE

        self.provision.infrastructure_objects[ResourceKind.HOSTS.value] = []
        cluster_id = self.provision.cluster.id
        playbooks = template.playbooks

        for declaration in template.expand_hosts(self.provision.id):
            outcome = self.runner.run(
                "Failed to create some host",
                partial(self.create_host, declaration, cluster_id, playbooks, context),
            )
            if not outcome.proceeds:
                return outcome

        return StepOutcome.CONTINUE

    def create_host(
        self,
        declaration: HostDeclaration,
        cluster_id: int,
        playbooks: Optional[str],
        context: EvaluationContext,
    ) -> None:
        """Create one host, track it and keep it offline until configured."""
        host = self.provision.object(
            ResourceKind.HOSTS,
            template=declaration.model_dump(),
            provider=self.provision.provider,
        )
        host.evaluate_rules(context)

        deployment = host.render_deployment()
        one = host.create(deployment, cluster_id, playbooks)

        self.provision.document.provision.append(ResourceKind.HOSTS, ObjectRef(id=one.id, name=one.name))
        self.services.control_plane.offline_host(one.id)
        self.provision.persist()

        logger.debug(f"Host {one.name} created with ID: {one.id}")

    def _deploy_hosts(self, skip: SkipMode) -> StepOutcome:
        if skip is SkipMode.ALL or not self.provision.hosts:
            return StepOutcome.CONTINUE

        logger.warning("This operation can take tens of minutes. Please be patient.")
        logger.info("Deploying")

        return self.runner.run("Failed to deploy hosts", self._run_deploy)

    def _run_deploy(self) -> None:
        output = self.services.deployer.deploy(self.provision)
        self.apply_deployment(output)

    def apply_deployment(self, output: DeploymentOutput) -> None:
        """Record driver results on the hosts and persist them."""
        logger.info("Monitoring hosts")
        self.update_hosts(output)

        if output.automation is not None:
            self.provision.add_automation(output.state, output.conf)

        self.provision.persist()

    def update_hosts(self, output: DeploymentOutput) -> None:
        """Rename new hosts to their address and record their deployment id.

        The driver reports one address (and id) per host, in host order;
        hosts that already carry a deployment id keep their current name.
        """
        addresses = list(output.addresses)
        deploy_ids = list(output.deploy_ids or [])
        handle = self.provision.object(ResourceKind.HOSTS, provider=self.provision.provider)

        for ref in self.provision.hosts:
            one = handle.info(ref.id)

            address = addresses.pop(0) if addresses else None
            deploy_id = deploy_ids.pop(0) if deploy_ids else None

            if one.deploy_id:
                continue

            if address is None:
                raise RemoteError(f"Deployment returned no address for host {ref.id}")

            self.services.control_plane.update_host(ref.id, address, deploy_id)
            ref.name = address

        self.provision.cache.invalidate(ResourceKind.HOSTS)

    def _configure(self, skip: SkipMode) -> StepOutcome:
        if skip is SkipMode.NONE:
            if self.provision.configure_resources():
                return StepOutcome.CONTINUE
            return StepOutcome.FAILED

        return self.runner.run("Failed to enable hosts", self._enable_hosts)

    def _enable_hosts(self) -> None:
        for host in self.provision.info_objects(ResourceKind.HOSTS, force_refresh=True):
            self.services.control_plane.enable_host(host.id)
