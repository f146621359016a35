"""
Deletion pipeline: drain VMs and images, destroy driver managed
infrastructure, then delete hosts, virtual resources and the remaining
infrastructure (cluster last) before removing the document.
"""

import logging
import time
from functools import partial
from typing import TYPE_CHECKING, Callable, List, Optional

from ..errors import DeletionError, LoopError, PollTimeoutError, PreconditionError, RecoverableError
from ..models import (
    RESOURCES,
    AutomationState,
    ObjectRef,
    ProvisionState,
    ResourceKind,
    is_infrastructure,
)
from ..retry import StepOutcome

if TYPE_CHECKING:
    from ..provision import Provision

logger = logging.getLogger(__name__)

# Hosts are deleted on their own before these
INFRASTRUCTURE_TEARDOWN = [
    ResourceKind.DATASTORES,
    ResourceKind.NETWORKS,
    ResourceKind.CLUSTERS,
]

# Marketplace apps are filed as images and templates, never tracked themselves
RESOURCES_TEARDOWN = [kind for kind in RESOURCES if kind is not ResourceKind.MARKETPLACEAPPS]

VM_DONE = "DONE"


class DeletionPipeline:
    """Tears a provision down in reverse dependency order."""

    def __init__(self, provision: "Provision"):
        self.provision = provision
        self.services = provision.services
        self.runner = provision.runner

    def run(self, cleanup: bool = False, timeout: Optional[int] = None, force: bool = False) -> None:
        """
        Delete every object of the provision and then its document.

        Args:
            cleanup: Delete running VMs and images left in the datastores first
            timeout: Seconds to wait for each VM/image deletion (settings.delete_timeout if None)
            force: Skip the preconditions and ignore individual deletion failures

        Raises:
            PreconditionError: If VMs or images remain and cleanup is not set
                (nothing is changed)
            DeletionError: If a step failed for good; the provision stays in DELETING
        """
        provision = self.provision
        if timeout is None:
            timeout = provision.settings.delete_timeout

        # Answers given during an earlier operation do not carry over
        self.runner.reset()

        try:
            if not force and not cleanup:
                if self.running_vms():
                    raise PreconditionError(
                        f"Provision with running VMs can't be deleted "
                        f"(state {provision.state_str}), use cleanup"
                    )
                if self.images():
                    raise PreconditionError(
                        f"Provision with images can't be deleted "
                        f"(state {provision.state_str}), use cleanup"
                    )

            provision._set_state(ProvisionState.DELETING)
            provision.persist()

            logger.info(f"Deleting provision {provision.id}")

            if cleanup:
                self._check(
                    self.runner.run("Failed to delete running VMs", partial(self.delete_vms, timeout)),
                    "Failed to delete running VMs", force,
                )
                self._check(
                    self.runner.run("Failed to delete images", partial(self.delete_images, timeout)),
                    "Failed to delete images", force,
                )

            automation = provision.automation
            if provision.hosts and automation is not None:
                self._check(
                    self.runner.run(
                        "Failed to destroy infrastructure",
                        partial(self.services.deployer.destroy, provision, automation),
                    ),
                    "Failed to destroy infrastructure", force,
                )

            self.delete_objects([ResourceKind.HOSTS], force)

            logger.info("Deleting provision objects")
            self.delete_objects(RESOURCES_TEARDOWN, force)
            self.delete_objects(INFRASTRUCTURE_TEARDOWN, force)

            provision.store.delete(provision.id)
            provision.deleted = True

            logger.info(f"Provision {provision.id} deleted")
        finally:
            if provision.exists():
                provision.unlock()

    def _check(self, outcome: StepOutcome, label: str, force: bool) -> None:
        if outcome.proceeds:
            return

        if force:
            logger.warning(f"{label}, continuing (force)")
            return

        raise DeletionError(
            f"{label}: {self.runner.last_error}; provision {self.provision.id} left in "
            f"{self.provision.state_str}"
        )

    # =========================================================================
    # Preconditions
    # =========================================================================

    def running_vms(self) -> bool:
        """True if any host of the provision still runs VMs."""
        hosts = self.provision.info_objects(ResourceKind.HOSTS, force_refresh=True)
        return any(host.running_vms > 0 for host in hosts)

    def _untracked_images(self) -> List[List[int]]:
        tracked = {ref.id for ref in self.provision.document.provision.objects(ResourceKind.IMAGES) or []}
        datastores = self.provision.info_objects(ResourceKind.DATASTORES, force_refresh=True)

        return [
            [image_id for image_id in datastore.image_ids if image_id not in tracked]
            for datastore in datastores
        ]

    def images(self) -> bool:
        """True if the provision datastores hold images the provision did not create."""
        return any(images for images in self._untracked_images())

    # =========================================================================
    # Drains
    # =========================================================================

    def delete_vms(self, timeout: int) -> None:
        """Delete every VM running on the provision hosts and wait for them."""
        hosts = self.provision.info_objects(ResourceKind.HOSTS, force_refresh=True)

        for host in hosts:
            if host.running_vms <= 0:
                continue

            for vm_id in host.vm_ids:
                logger.debug(f"Deleting VM {vm_id} on host {host.id}")
                self.services.control_plane.delete_vm(vm_id)
                self._wait(
                    partial(self._vm_done, vm_id),
                    timeout,
                    f"Timeout expired for deleting VM {vm_id}",
                )

        if self.running_vms():
            raise LoopError("Still found running VMs")

    def _vm_done(self, vm_id: int) -> bool:
        return self.services.control_plane.vm_state(vm_id) == VM_DONE

    def delete_images(self, timeout: int) -> None:
        """Delete images left in the provision datastores and wait for them."""
        for image_ids in self._untracked_images():
            for image_id in image_ids:
                logger.debug(f"Deleting image {image_id}")
                self.services.control_plane.delete_image(image_id)
                self._wait(
                    partial(self._image_gone, image_id),
                    timeout,
                    f"Timeout expired for deleting image {image_id}",
                )

        if self.images():
            raise LoopError("Still found images")

    def _image_gone(self, image_id: int) -> bool:
        return not self.services.control_plane.image_exists(image_id)

    def _wait(self, done: Callable[[], bool], timeout: int, message: str) -> None:
        """Poll until done() holds, sleeping settings.poll_interval between checks.

        Raises:
            PollTimeoutError: If timeout seconds pass first
        """
        deadline = time.monotonic() + timeout

        while True:
            if done():
                return
            if time.monotonic() >= deadline:
                raise PollTimeoutError(message)
            time.sleep(self.provision.settings.poll_interval)

    # =========================================================================
    # Objects
    # =========================================================================

    def delete_objects(self, kinds: List[ResourceKind], force: bool) -> None:
        """Delete tracked objects class by class, untracking each one."""
        objects = self.provision.document.provision

        for kind in kinds:
            refs = objects.objects(kind)
            if not refs:
                continue

            for ref in list(refs):
                label = f"Failed to delete {kind.singular} {ref.id}"
                outcome = self.runner.run(label, partial(self._delete_object, kind, ref, force))
                self._check(outcome, label, force)

                objects.remove(kind, ref.id)
                self.provision.persist()

    def _delete_object(self, kind: ResourceKind, ref: ObjectRef, force: bool) -> None:
        logger.debug(f"Deleting {kind.singular} {ref.id}")
        provision = self.provision

        automation = provision.automation if is_infrastructure(kind) else None
        handle = provision.object(kind, provider=provision.provider)

        try:
            handle.info(ref.id)
            result = handle.delete(force, provision, automation)
        except RecoverableError as e:
            if not force:
                raise
            logger.warning(f"Ignoring failure deleting {kind.singular} {ref.id}: {e}")
            return

        if isinstance(result, AutomationState) and result.is_complete:
            provision.add_automation(result.state, result.conf)
