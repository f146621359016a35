"""Tests for provision template validation, host expansion and input merging."""

import json

import pytest

from provisioner.errors import ConfigurationError
from provisioner.models import InputValue, ResourceKind
from provisioner.template import (
    HostDeclaration,
    ProvisionTemplate,
    merge_inputs,
    read_provider,
)


def _template(**overrides):
    data = {"name": "p", "cluster": {"name": "c"}}
    data.update(overrides)
    return ProvisionTemplate.load(data)


class TestLoading:
    """Tests for loading templates."""

    def test_missing_cluster_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError, match="Invalid provision template"):
            ProvisionTemplate.load({"name": "p"})

    def test_from_file(self, temp_dir, template_data):
        path = temp_dir / "provision.json"
        path.write_text(json.dumps(template_data))

        template = ProvisionTemplate.from_file(path)
        assert template.name == "edge-cluster"
        assert [d.name for d in template.declarations(ResourceKind.DATASTORES)] == ["edge-images", "edge-system"]

    def test_from_missing_file(self, temp_dir):
        with pytest.raises(ConfigurationError, match="not found"):
            ProvisionTemplate.from_file(temp_dir / "nope.json")

    def test_from_invalid_json(self, temp_dir):
        path = temp_dir / "broken.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError, match="not valid JSON"):
            ProvisionTemplate.from_file(path)

    def test_extra_keys(self, template):
        assert template.extra() == {"owner_tag": "team-a"}

    def test_playbooks_joined(self, template):
        assert template.playbooks == "default,extra"
        assert _template(playbook="single").playbooks == "single"
        assert _template().playbooks is None


class TestHostExpansion:
    """Tests for expanding host groups."""

    def test_count_expansion(self):
        template = _template(hosts=[{"provision": {"count": 3}}])
        hosts = template.expand_hosts(provision_id=9)

        assert [h.provision.index for h in hosts] == [0, 1, 2]
        assert all(h.provision.id == 9 for h in hosts)
        assert all(h.provision.count == 3 for h in hosts)

    def test_hostname_list_expansion(self):
        template = _template(hosts=[{"provision": {"hostname": ["a", "b"]}}])
        hosts = template.expand_hosts(provision_id=1)

        assert [h.provision.hostname for h in hosts] == ["a", "b"]
        assert [h.provision.index for h in hosts] == [0, 1]

    def test_index_runs_across_groups(self):
        template = _template(hosts=[
            {"provision": {"count": 2}},
            {"provision": {"hostname": ["x"]}},
            {"provision": {}},
        ])
        hosts = template.expand_hosts(provision_id=1)

        assert [h.provision.index for h in hosts] == [0, 1, 2, 3]
        assert hosts[2].provision.hostname == "x"

    def test_declarations_are_not_mutated(self):
        template = _template(hosts=[{"provision": {"count": 2}}])
        template.expand_hosts(provision_id=1)

        assert template.hosts[0].provision.index is None
        assert template.hosts[0].provision.id is None

    def test_from_remote_strips_host_specific_data(self):
        stencil = HostDeclaration.from_remote({
            "PROVISION": {"INDEX": 0, "HOSTNAME": "10.0.0.1", "DEPLOY_ID": "i-0", "ID": 4},
            "PROVISION_CONNECTION": {"REMOTE_USER": "root", "REMOTE_PORT": "22", "OTHER": "x"},
            "ANSIBLE_PLAYBOOK": "default",
            "ERROR": "old error",
        })

        assert stencil.provision.hostname is None
        assert stencil.provision.id == 4
        assert "deploy_id" not in stencil.provision.model_dump()
        assert stencil.connection == {"remote_user": "root", "remote_port": "22"}
        assert stencil.ansible_playbook == "default"
        assert "error" not in stencil.model_dump()


class TestInputs:
    """Tests for merging user and provider inputs."""

    def test_user_value_wins(self):
        merged = merge_inputs(
            [InputValue(name="a", value=1), InputValue(name="b", value=2)],
            [InputValue(name="b", value=5, type="text"), InputValue(name="c", value=3)],
        )

        assert [(i.name, i.value) for i in merged] == [("a", 1), ("b", 2), ("c", 3)]
        assert merged[1].type == "text"

    def test_no_provider_inputs(self):
        user = [InputValue(name="a", value=1)]
        assert merge_inputs(user, None) == user

    def test_with_inputs_leaves_template_untouched(self, template):
        merged = template.with_inputs([InputValue(name="region", value="eu")])

        assert [i.name for i in merged.inputs] == ["instance_type", "region"]
        assert [i.name for i in template.inputs] == ["instance_type"]


class TestReadProvider:
    """Tests for reading the provider name from a template."""

    def test_from_defaults(self, template):
        assert read_provider(template) == "aws"

    def test_from_first_host(self):
        template = _template(hosts=[{"provision": {"provider_name": "onprem"}}])
        assert read_provider(template) == "onprem"

    def test_absent(self):
        assert read_provider(_template()) is None
