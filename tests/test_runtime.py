"""Unit tests for ClusterClient against mocked Kubernetes API objects."""

from unittest.mock import MagicMock

import pytest

pytest.importorskip("kubernetes")

from kubernetes import client
from kubernetes.client import ApiException

from conftest import challenge_body, make_instance
from instance_operator.runtime import ClusterClient, is_not_found

NS = "ctf-instances"


def instance_body(name="chal-web-101-alice", **status):
    return {
        "apiVersion": "ctf.ctf.io/v1alpha1",
        "kind": "ChallengeInstance",
        "metadata": {"name": name, "namespace": NS, "uid": "abc-123", "resourceVersion": "5"},
        "spec": {
            "challengeId": "web-101",
            "sourceId": "alice",
            "challengeName": "web-101",
            "since": "2026-01-01T12:00:00Z",
            "until": "2026-01-01T12:10:00Z",
        },
        "status": status,
    }


@pytest.fixture
def apis():
    return {
        "core": MagicMock(),
        "apps": MagicMock(),
        "networking": MagicMock(),
        "custom": MagicMock(),
    }


@pytest.fixture
def cluster_client(apis):
    return ClusterClient(**apis)


class TestCustomObjects:
    def test_get_instance(self, cluster_client, apis):
        apis["custom"].get_namespaced_custom_object.return_value = instance_body(flags=["FLAG{x}"])

        instance = cluster_client.get_instance(NS, "chal-web-101-alice")

        apis["custom"].get_namespaced_custom_object.assert_called_once_with(
            "ctf.ctf.io", "v1alpha1", NS, "challengeinstances", "chal-web-101-alice",
        )
        assert instance.uid == "abc-123"
        assert instance.resource_version == "5"
        assert instance.source_id == "alice"
        assert instance.status.flags == ["FLAG{x}"]
        assert instance.until.isoformat() == "2026-01-01T12:10:00+00:00"

    def test_get_instance_not_found(self, cluster_client, apis):
        apis["custom"].get_namespaced_custom_object.side_effect = ApiException(status=404)
        assert cluster_client.get_instance(NS, "missing") is None

    def test_get_instance_other_errors_propagate(self, cluster_client, apis):
        apis["custom"].get_namespaced_custom_object.side_effect = ApiException(status=500)
        with pytest.raises(ApiException):
            cluster_client.get_instance(NS, "broken")

    def test_get_template(self, cluster_client, apis):
        apis["custom"].get_namespaced_custom_object.return_value = challenge_body(exposeType="LoadBalancer")

        template = cluster_client.get_template(NS, "web-101")

        args = apis["custom"].get_namespaced_custom_object.call_args[0]
        assert args[3] == "challenges"
        assert template.expose_type == "LoadBalancer"
        assert template.port == 8080

    def test_list_instances_by_source(self, cluster_client, apis):
        apis["custom"].list_namespaced_custom_object.return_value = {"items": [instance_body()]}

        instances = cluster_client.list_instances(NS, source_id="bob@corp.io")

        kwargs = apis["custom"].list_namespaced_custom_object.call_args[1]
        assert kwargs["label_selector"] == "ctf.io/source=bob-at-corp-io"
        assert [i.name for i in instances] == ["chal-web-101-alice"]

    def test_create_instance_omits_status(self, cluster_client, apis):
        apis["custom"].create_namespaced_custom_object.return_value = instance_body()

        cluster_client.create_instance(make_instance())

        body = apis["custom"].create_namespaced_custom_object.call_args[0][4]
        assert "status" not in body
        assert body["kind"] == "ChallengeInstance"
        assert body["spec"]["since"] == "2026-01-01T12:00:00Z"

    def test_delete_instance(self, cluster_client, apis):
        assert cluster_client.delete_instance(NS, "chal-web-101-alice") is True
        options = apis["custom"].delete_namespaced_custom_object.call_args[1]["body"]
        assert options.propagation_policy == "Background"

    def test_delete_missing_instance(self, cluster_client, apis):
        apis["custom"].delete_namespaced_custom_object.side_effect = ApiException(status=404)
        assert cluster_client.delete_instance(NS, "gone") is False

    def test_update_status_uses_subresource(self, cluster_client, apis):
        apis["custom"].patch_namespaced_custom_object_status.return_value = instance_body()
        instance = make_instance(flags=["FLAG{x}"], phase="Running", ready=True)

        cluster_client.update_instance_status(instance)

        args = apis["custom"].patch_namespaced_custom_object_status.call_args[0]
        status = args[5]["status"]
        assert status["phase"] == "Running"
        assert status["ready"] is True
        assert status["flags"] == ["FLAG{x}"]
        assert "metadata" not in args[5]
        apis["custom"].patch_namespaced_custom_object.assert_not_called()

    def test_update_status_is_version_guarded(self, cluster_client, apis):
        """The patch carries the read resourceVersion and records the new one."""
        written = instance_body()
        written["metadata"]["resourceVersion"] = "18"
        apis["custom"].patch_namespaced_custom_object_status.return_value = written
        instance = make_instance(flags=["FLAG{x}"])
        instance.resource_version = "17"

        cluster_client.update_instance_status(instance)

        body = apis["custom"].patch_namespaced_custom_object_status.call_args[0][5]
        assert body["metadata"] == {"resourceVersion": "17"}
        assert body["status"]["flagValidated"] is False
        assert instance.resource_version == "18"

    def test_update_status_conflict_propagates(self, cluster_client, apis):
        apis["custom"].patch_namespaced_custom_object_status.side_effect = ApiException(status=409)
        instance = make_instance()
        instance.resource_version = "17"
        with pytest.raises(ApiException):
            cluster_client.update_instance_status(instance)

    def test_mark_flag_validated_patches_one_field(self, cluster_client, apis):
        cluster_client.mark_flag_validated(NS, "chal-web-101-alice")

        apis["custom"].patch_namespaced_custom_object_status.assert_called_once_with(
            "ctf.ctf.io", "v1alpha1", NS, "challengeinstances", "chal-web-101-alice",
            {"status": {"flagValidated": True}},
        )

    def test_update_spec(self, cluster_client, apis):
        apis["custom"].patch_namespaced_custom_object.return_value = instance_body()
        instance = make_instance()
        instance.renew_count = 2

        cluster_client.update_instance_spec(instance)

        body = apis["custom"].patch_namespaced_custom_object.call_args[0][5]
        assert body["spec"]["renewCount"] == 2
        assert "status" not in body


class TestOwnedResources:
    def test_get_resource_dispatch(self, cluster_client, apis):
        cluster_client.get_resource("deployment", NS, "d")
        cluster_client.get_resource("service", NS, "s")
        cluster_client.get_resource("ingress", NS, "i")
        cluster_client.get_resource("networkpolicy", NS, "n")

        apis["apps"].read_namespaced_deployment.assert_called_once_with("d", NS)
        apis["core"].read_namespaced_service.assert_called_once_with("s", NS)
        apis["networking"].read_namespaced_ingress.assert_called_once_with("i", NS)
        apis["networking"].read_namespaced_network_policy.assert_called_once_with("n", NS)

    def test_get_resource_not_found(self, cluster_client, apis):
        apis["core"].read_namespaced_service.side_effect = ApiException(status=404)
        assert cluster_client.get_resource("service", NS, "missing") is None

    def test_unknown_kind(self, cluster_client):
        with pytest.raises(ValueError):
            cluster_client.get_resource("configmap", NS, "x")

    def test_create_resource(self, cluster_client, apis):
        body = client.V1Service(metadata=client.V1ObjectMeta(name="s"))
        cluster_client.create_resource("service", NS, body)
        apis["core"].create_namespaced_service.assert_called_once_with(NS, body)

    def test_set_owner(self, cluster_client):
        body = client.V1Service(metadata=client.V1ObjectMeta(name="s"))
        cluster_client.set_owner(body, make_instance())
        [owner] = body.metadata.owner_references
        assert owner.api_version == "ctf.ctf.io/v1alpha1"
        assert owner.kind == "ChallengeInstance"
        assert owner.name == "chal-web-101-alice"
        assert owner.uid == "uid-fixed"
        assert owner.controller is True
        assert owner.block_owner_deletion is True


class TestNamespace:
    def test_creates_missing_namespace(self, cluster_client, apis):
        apis["core"].read_namespace.side_effect = ApiException(status=404)
        cluster_client.ensure_namespace(NS)
        created = apis["core"].create_namespace.call_args[0][0]
        assert created.metadata.name == NS

    def test_existing_namespace(self, cluster_client, apis):
        cluster_client.ensure_namespace(NS)
        apis["core"].create_namespace.assert_not_called()


def test_is_not_found():
    assert is_not_found(ApiException(status=404))
    assert not is_not_found(ApiException(status=409))
    assert not is_not_found(ValueError())
