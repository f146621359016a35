"""Tests for adding hosts and IPs to a running provision."""

from unittest.mock import patch

import pytest

from provisioner.errors import PipelineError, PreconditionError, RemoteError
from provisioner.models import AutomationState, ProvisionState
from provisioner.retry import Decision, FixedPolicy
from provisioner.template import ProvisionTemplate

from .fakes import set_stored_state


class TestAddHosts:
    """Tests for growing the host set."""

    def test_add_by_amount(self, deployed, cloud):
        original = [ref.id for ref in deployed.hosts]
        deployed.add_hosts(amount=2)

        assert deployed.state is ProvisionState.RUNNING
        assert len(deployed.hosts) == 4
        assert [ref.id for ref in deployed.hosts[:2]] == original
        assert cloud.deployments[-2:] == ["host:edge-host2:2", "host:edge-host3:3"]

    def test_new_hosts_renamed_existing_kept(self, deployed, cloud):
        deployed.add_hosts(amount=2)

        assert [ref.name for ref in deployed.hosts] == ["10.0.0.1", "10.0.0.2", "10.0.1.3", "10.0.1.4"]
        updated = [call[1] for call in cloud.called("update_host")]
        assert updated[-2:] == [ref.id for ref in deployed.hosts[2:]]

    def test_driver_gets_current_automation(self, deployed, cloud):
        deployed.add_hosts(amount=1)

        _, _, automation = cloud.called("add_hosts")[0]
        assert automation == AutomationState(state="tfstate", conf="tfconf")
        assert deployed.automation == AutomationState(state="tfstate2", conf="tfconf2")

    def test_add_by_hostnames(self, deployed, cloud):
        deployed.add_hosts(hostnames=["rack1", "rack2"])

        assert cloud.deployments[-2:] == ["host:rack1:2", "host:rack2:3"]

    def test_new_hosts_copy_the_first_host(self, deployed, cloud):
        deployed.add_hosts(amount=1)

        new_host = cloud.objects["hosts"][deployed.hosts[-1].id]
        assert new_host.template["ANSIBLE_PLAYBOOK"] == "default,extra"
        assert new_host.template["PROVISION"]["ID"] == deployed.id
        assert new_host.attributes["status"] == "offline"

    def test_new_hosts_configured(self, deployed, cloud):
        deployed.add_hosts(amount=1)

        _, hosts, _ = cloud.called("configure")[-1]
        assert hosts == [ref.id for ref in deployed.hosts]

    def test_requires_running(self, deployed, cloud):
        cloud.configure_rc = 1
        with pytest.raises(PipelineError):
            deployed.configure(force=True)
        assert deployed.state is ProvisionState.ERROR

        with pytest.raises(PreconditionError, match="expected RUNNING"):
            deployed.add_hosts(amount=1)

        assert cloud.called("add_hosts") == []

    def test_requires_amount_or_hostnames(self, deployed):
        with pytest.raises(PreconditionError):
            deployed.add_hosts()

    def test_requires_a_host_to_copy(self, make_provision, template_data, cloud):
        del template_data["hosts"]
        provision = make_provision()
        provision.deploy(ProvisionTemplate.load(template_data))

        with pytest.raises(PreconditionError, match="no hosts"):
            provision.add_hosts(amount=1)

    def test_failed_host_creation(self, deployed, cloud, store):
        cloud.fail("create:hosts")

        with pytest.raises(PipelineError, match="Failed to create some host"):
            deployed.add_hosts(amount=1)

        assert deployed.state is ProvisionState.ERROR
        assert cloud.called("add_hosts") == []

    def test_failed_configuration(self, deployed, cloud):
        cloud.configure_rc = 1

        with pytest.raises(PipelineError):
            deployed.add_hosts(amount=1)

        assert deployed.state is ProvisionState.ERROR


class TestAddIps:
    """Tests for growing the address pool."""

    def test_add_ips(self, deployed, cloud):
        deployed.add_ips(3)

        network_id = deployed.networks[0].id
        assert cloud.called("add_ar") == [("add_ar", network_id, deployed.ar_template)] * 3

    def test_not_running(self, deployed, cloud, store):
        set_stored_state(store, deployed, ProvisionState.DEPLOYING)
        cloud.calls.clear()

        with pytest.raises(PreconditionError, match="DEPLOYING"):
            deployed.add_ips(1)

        assert cloud.calls == []

    def test_wrong_network_driver(self, deployed, cloud):
        cloud.objects["networks"][deployed.networks[0].id].attributes["vn_mad"] = "bridge"

        with pytest.raises(PreconditionError, match="bridge"):
            deployed.add_ips(1)

        assert cloud.called("add_ar") == []

    def test_no_address_range_template(self, deployed):
        deployed.document.ar_template = None

        with pytest.raises(PreconditionError, match="address range"):
            deployed.add_ips(1)

    def test_stops_at_first_failure(self, deployed, cloud):
        side_effect = [None, RemoteError("no room"), None]

        with patch.object(cloud, "add_address_range", side_effect=side_effect) as add:
            with pytest.raises(RemoteError, match="no room"):
                deployed.add_ips(3)

        assert add.call_count == 2


class TestAddHostsRecovery:
    """Tests for failures around the host used as a model."""

    def test_unreadable_first_host_ends_in_error(self, deployed, cloud, store):
        cloud.fail("info:hosts")

        with pytest.raises(PipelineError, match="Failed to read the first host"):
            deployed.add_hosts(amount=1)

        body, _ = store.info(deployed.id)
        assert body["state"] == ProvisionState.ERROR
        assert cloud.called("add_hosts") == []

        deployed.configure()
        assert deployed.state is ProvisionState.RUNNING

    def test_first_host_read_is_retried(self, make_provision, template, cloud):
        provision = make_provision(FixedPolicy(Decision.RETRY, max_retries=2))
        provision.deploy(template)
        cloud.fail("info:hosts")

        provision.add_hosts(amount=1)

        assert provision.state is ProvisionState.RUNNING
        assert len(provision.hosts) == 3

    def test_new_hosts_see_deploy_inputs(self, deployed, make_provision, cloud):
        reloaded = make_provision(document_id=deployed.id)
        reloaded.add_hosts(amount=1)

        assert cloud.contexts[-1].inputs == {"instance_type": "c5.metal", "region": "us-east-1"}
