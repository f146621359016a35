"""
Pytest configuration and fixtures for provisioner tests.
"""

import tempfile
from pathlib import Path

import pytest

from provisioner.models import ProvisionState
from provisioner.provision import Provision
from provisioner.retry import Decision, FixedPolicy
from provisioner.settings import ProvisionerSettings
from provisioner.store import FileDocumentStore
from provisioner.template import ProvisionTemplate

from .fakes import FakeCloud


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def settings(temp_dir):
    """Settings that never sleep and never prompt."""
    return ProvisionerSettings(
        fail_mode="quit",
        poll_interval=0,
        delete_timeout=0,
        state_dir=temp_dir / "documents",
    )


@pytest.fixture
def store(temp_dir):
    return FileDocumentStore(temp_dir / "documents")


@pytest.fixture
def cloud():
    return FakeCloud()


@pytest.fixture
def template_data():
    """A provision with every object class the pipelines handle."""
    return {
        "name": "edge-cluster",
        "description": "Edge cluster for tests",
        "owner_tag": "team-a",
        "playbook": ["default", "extra"],
        "defaults": {"provision": {"provider_name": "aws"}},
        "inputs": [{"name": "instance_type", "value": "c5.metal"}],
        "cluster": {"name": "edge-cluster", "datastores": [0, 1]},
        "datastores": [{"name": "edge-images"}, {"name": "edge-system"}],
        "networks": [
            {
                "name": "edge-public",
                "vn_mad": "elastic",
                "ar": [{"ip": "10.0.0.0", "size": 2, "type": "IP4"}],
            }
        ],
        "hosts": [{"provision": {"count": 2}, "im_mad": "kvm"}],
        "images": [{"name": "alpine"}],
        "marketplaceapps": [{"name": "ubuntu-app"}],
        "templates": [{"name": "vm-template"}],
    }


@pytest.fixture
def template(template_data):
    return ProvisionTemplate.load(template_data)


@pytest.fixture
def make_provision(store, cloud, settings):
    """Build a Provision wired to the fake cloud, failing with QUIT by default."""
    def _make(policy=None, document_id=None):
        return Provision(
            store,
            cloud.services(),
            document_id=document_id,
            settings=settings,
            policy=policy or FixedPolicy(Decision.QUIT),
        )
    return _make


@pytest.fixture
def deployed(make_provision, template):
    """A RUNNING provision created from the full template."""
    provision = make_provision()
    provision.deploy(template)
    assert provision.state is ProvisionState.RUNNING
    return provision
