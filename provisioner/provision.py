"""
Provision - lifecycle controller for one provision document.

The Provision wraps the versioned document kept in the document store, exposes
read-only accessors over it and drives the creation, scaling, mutation and
deletion pipelines. Every mutation is persisted right away with the version
last read from the store.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from .cache import ObjectCache
from .errors import PipelineError, PreconditionError, RecoverableError
from .interfaces import DocumentStore, ProvisionServices
from .models import (
    DUMMY_PROVIDER,
    DUMMY_PROVIDER_NAME,
    AutomationState,
    EvaluationContext,
    ObjectOperation,
    ObjectRef,
    ProviderIdentity,
    ProvisionDocument,
    ProvisionObjects,
    ProvisionState,
    RemoteObject,
    ResourceKind,
    SkipMode,
    is_infrastructure,
)
from .resources.base import RESOURCE_VARIANTS, Resource
from .retry import DecisionPolicy, StepRunner, policy_from_settings
from .settings import ProvisionerSettings, get_settings
from .template import ProvisionTemplate

logger = logging.getLogger(__name__)


class Provision:
    """One provision and every operation that can be run on it.

    Args:
        store: Document store holding the provision document
        services: Control plane, drivers and provider catalog
        document_id: Load an existing document; None for a provision about to be deployed
        settings: Overrides the global settings
        policy: Overrides the failure policy selected by settings.fail_mode
    """

    def __init__(
        self,
        store: DocumentStore,
        services: ProvisionServices,
        document_id: Optional[int] = None,
        settings: Optional[ProvisionerSettings] = None,
        policy: Optional[DecisionPolicy] = None,
    ):
        self.store = store
        self.services = services
        self.settings = settings or get_settings()
        self.runner = StepRunner(policy or policy_from_settings(self.settings))
        self.cache = ObjectCache(self._refresh_objects, services.factory)

        self.id: Optional[int] = document_id
        self.version: Optional[int] = None
        self.document: Optional[ProvisionDocument] = None
        self._provider: Optional[ProviderIdentity] = None
        self.deleted = False

        if document_id is not None:
            self.info()

    def __enter__(self) -> "Provision":
        self.lock()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.exists():
            self.unlock()

    # =========================================================================
    # Document
    # =========================================================================

    def info(self) -> ProvisionDocument:
        """Reload the document from the store."""
        body, version = self.store.info(self.id)
        self.document = ProvisionDocument.model_validate(body)
        self.version = version
        return self.document

    def allocate(self, template: ProvisionTemplate, provider: ProviderIdentity) -> int:
        """Create the document in DEPLOYING state from a template."""
        fields = {
            "name": template.name,
            "description": template.description,
            "start_time": int(time.time()),
            "state": ProvisionState.DEPLOYING,
            "provider": provider.name or DUMMY_PROVIDER_NAME,
            "provision": ProvisionObjects(),
            "inputs": template.inputs,
        }
        document = ProvisionDocument.model_validate({**template.extra(), **fields})

        self.id, self.version = self.store.allocate(document.model_dump(mode="json"), template.name)
        self.document = document
        self._provider = provider

        logger.info(f"Allocated provision {self.id} ({template.name})")
        return self.id

    def persist(self) -> None:
        """Write the in-memory document back with the last seen version.

        Raises:
            StaleDocumentError: If someone else updated the document meanwhile
        """
        self.version = self.store.update(self.id, self.document.model_dump(mode="json"), self.version)

    def exists(self) -> bool:
        return self.id is not None and self.document is not None and not self.deleted

    def lock(self) -> None:
        self.store.lock(self.id)

    def unlock(self) -> None:
        self.store.unlock(self.id)

    def _refresh_objects(self) -> ProvisionObjects:
        return self.info().provision

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def name(self) -> str:
        return self.document.name

    @property
    def state(self) -> ProvisionState:
        return self.document.state

    def _set_state(self, state: ProvisionState) -> None:
        """Move to a new state; only the pipelines drive transitions."""
        self.document.state = ProvisionState(state)

    @property
    def state_str(self) -> str:
        return self.state.name

    @property
    def infrastructure_objects(self) -> Dict[str, List[ObjectRef]]:
        return self.document.provision.infrastructure

    @property
    def resource_objects(self) -> Dict[str, List[ObjectRef]]:
        return self.document.provision.resource

    def objects(self) -> Dict[str, List[ObjectRef]]:
        """Infrastructure and resource objects in a single mapping."""
        return {**self.infrastructure_objects, **self.resource_objects}

    def _tracked(self, kind: ResourceKind) -> List[ObjectRef]:
        return self.document.provision.objects(kind) or []

    @property
    def cluster(self) -> Optional[ObjectRef]:
        clusters = self._tracked(ResourceKind.CLUSTERS)
        return clusters[0] if clusters else None

    @property
    def hosts(self) -> List[ObjectRef]:
        return self._tracked(ResourceKind.HOSTS)

    @property
    def datastores(self) -> List[ObjectRef]:
        return self._tracked(ResourceKind.DATASTORES)

    @property
    def networks(self) -> List[ObjectRef]:
        return self._tracked(ResourceKind.NETWORKS)

    @property
    def automation(self) -> Optional[AutomationState]:
        """Deployment driver state, only when both state and conf are known."""
        tf = self.document.tf
        if tf is None or not tf.is_complete:
            return None
        return tf

    def add_automation(self, state: Any, conf: Any) -> None:
        self.document.tf = AutomationState(state=state, conf=conf)

    @property
    def ar_template(self) -> Optional[Dict[str, Any]]:
        return self.document.ar_template

    @property
    def provider(self) -> ProviderIdentity:
        if self.document.provider == DUMMY_PROVIDER_NAME:
            return DUMMY_PROVIDER

        if self._provider is None:
            self._provider = self.services.providers.by_name(self.document.provider)
            if self._provider is None:
                raise PreconditionError(f"Provider '{self.document.provider}' not found")

        return self._provider

    def evaluation_context(self) -> EvaluationContext:
        """Context for rule evaluation, with the inputs merged at deploy time."""
        return EvaluationContext(
            provision_id=self.id,
            provision_name=self.name,
            provider=self.provider,
            inputs={i.name: i.value for i in self.document.inputs},
        )

    def info_objects(self, kind: ResourceKind | str, force_refresh: bool = False) -> List[RemoteObject]:
        """Remote snapshots of the tracked objects of a class (cached)."""
        return self.cache.get_objects(kind, force_refresh)

    def object(
        self,
        kind: ResourceKind | str,
        template: Optional[Dict[str, Any]] = None,
        provider: Optional[ProviderIdentity] = None,
    ) -> Resource:
        """Resource handle for an object class, checked against its variant."""
        kind = ResourceKind(kind)
        handle = self.services.factory.object(kind, provider, template)

        variant = RESOURCE_VARIANTS[kind]
        if not isinstance(handle, variant):
            raise TypeError(
                f"Factory returned {type(handle).__name__} for {kind.value}, "
                f"expected a {variant.__name__}"
            )
        return handle

    # =========================================================================
    # Operations
    # =========================================================================

    def deploy(
        self,
        template: ProvisionTemplate,
        cleanup: bool = True,
        timeout: Optional[int] = None,
        skip: SkipMode = SkipMode.NONE,
        provider: ProviderIdentity | str | None = None,
    ) -> int:
        """Create every object of the template and configure the hosts.

        Returns:
            The id of the new provision
        """
        from .pipelines.creation import CreationPipeline

        return CreationPipeline(self).deploy(template, cleanup, timeout, SkipMode(skip), provider)

    def configure(self, force: bool = False) -> None:
        """Run host configuration again.

        Without force only a provision in ERROR can be configured; with force
        any provision that is not being deployed or deleted.
        """
        blocked = (ProvisionState.PENDING, ProvisionState.DEPLOYING, ProvisionState.DELETING)

        if force and self.state in blocked:
            raise PreconditionError(f"Can't configure provision in {self.state_str}")

        if not force and self.state is not ProvisionState.ERROR:
            raise PreconditionError(
                f"Can't configure provision in {self.state_str}, expected ERROR"
            )

        if not self.configure_resources():
            raise PipelineError(f"Failed to configure provision {self.id}", "configure")

    def configure_resources(self) -> bool:
        """Hand hosts and datastores to the configuration driver.

        Leaves the provision in RUNNING on success and in ERROR otherwise.
        """
        self._set_state(ProvisionState.CONFIGURING)
        self.persist()

        try:
            rc = self.services.configurator.configure(self.hosts, self.datastores, self)
        except RecoverableError as e:
            logger.error(f"Configuration of provision {self.id} failed: {e}")
            rc = -1

        self._set_state(ProvisionState.RUNNING if rc == 0 else ProvisionState.ERROR)
        self.persist()

        logger.info(f"Provision {self.id} configured, state {self.state_str}")
        return rc == 0

    def add_hosts(self, amount: Optional[int] = None, hostnames: Optional[List[str]] = None) -> None:
        """Provision and configure more hosts like the first one."""
        from .pipelines.scaling import ScalingOperations

        ScalingOperations(self).add_hosts(amount, hostnames)

    def add_ips(self, amount: int) -> None:
        """Add address ranges to the first (elastic) network."""
        from .pipelines.scaling import ScalingOperations

        ScalingOperations(self).add_ips(amount)

    def delete(self, cleanup: bool = False, timeout: Optional[int] = None, force: bool = False) -> None:
        """Tear the provision down and remove its document."""
        from .pipelines.deletion import DeletionPipeline

        DeletionPipeline(self).run(cleanup, timeout, force)

    def update_objects(
        self,
        kind: ResourceKind | str,
        operation: ObjectOperation | str,
        object_id: int | str,
        name: Optional[str] = None,
    ) -> None:
        """Track or delete a single object outside the bulk pipelines.

        Raises:
            RemoteError: If the object cannot be read or deleted; the
                document is left untouched
        """
        kind = ResourceKind(kind)
        operation = ObjectOperation(operation)

        self.info()

        if operation is ObjectOperation.APPEND:
            self.document.provision.append(kind, ObjectRef(id=int(object_id), name=name))
        else:
            handle = self.object(kind, provider=self.provider)
            handle.info(int(object_id))

            automation = self.automation if is_infrastructure(kind) else None
            result = handle.delete(False, self, automation)

            # A host deletion may hand back new driver state
            if isinstance(result, AutomationState) and result.is_complete:
                self.add_automation(result.state, result.conf)

            self.document.provision.remove(kind, object_id)

        self.persist()
        self.cache.invalidate(kind)
        logger.info(f"{operation.value.capitalize()} {kind.singular} {object_id} on provision {self.id}")
