import copy
from io import StringIO

import pytest

from jkube_kit.config import ResourceConfig
from jkube_kit.exceptions import ConfigurationError
from jkube_kit.resources.base import ResourceDefinition
from jkube_kit.resources.loader import yaml_writer
from jkube_kit.resources.merge import merge, merge_resource_lists, merge_resources


def _deployment(containers, labels=None, annotations=None, **spec_extra):
    spec = {"replicas": 1, "template": {"metadata": {"labels": {"app": "demo"}}, "spec": {"containers": containers}}}
    spec.update(spec_extra)
    metadata = {"name": "demo"}
    if labels is not None:
        metadata["labels"] = labels
    if annotations is not None:
        metadata["annotations"] = annotations
    return ResourceDefinition(api_version="apps/v1", kind="Deployment", metadata=metadata, spec=spec)


def _generated():
    return _deployment(
        [
            {
                "name": "a",
                "image": "demo/a:latest",
                "imagePullPolicy": "IfNotPresent",
                "env": [{"name": "KUBERNETES_NAMESPACE", "value": "ns"}, {"name": "HOSTNAME", "value": "x"}],
                "ports": [{"name": "http", "containerPort": 8080, "protocol": "TCP"}],
                "readinessProbe": {"httpGet": {"path": "/ready", "port": 8080}},
                "securityContext": {"privileged": False},
            },
            {"name": "b", "image": "demo/b:latest", "ports": [{"containerPort": 9090}]},
        ],
        labels={"app": "demo", "provider": "jkube", "version": "1.0"},
        annotations={"jkube.io/git-commit": "abc"},
    )


def _fragment():
    return _deployment(
        [
            {
                "env": [{"name": "HOSTNAME", "value": "override"}, {"name": "EXTRA", "value": "1"}],
                "ports": [{"name": "web", "containerPort": 8080}, {"containerPort": 8443}],
                "readinessProbe": {"exec": {"command": ["true"]}},
            }
        ],
        labels={"provider": "", "team": "core", "version": "2.0"},
        annotations={"jkube.io/git-commit": None},
    )


def _dump(resource):
    stream = StringIO()
    yaml_writer().dump(resource.to_dict(), stream)
    return stream.getvalue()


def test_merge_is_idempotent():
    generated, fragment = _generated(), _fragment()

    once = merge_resources(generated, fragment)
    twice = merge_resources(once, fragment)

    assert twice.to_dict() == once.to_dict()


def test_merge_is_deterministic():
    first = merge_resources(_generated(), _fragment())
    second = merge_resources(_generated(), _fragment())

    assert _dump(first) == _dump(second)


def test_merge_does_not_mutate_inputs():
    generated, fragment = _generated(), _fragment()
    generated_before = copy.deepcopy(generated.to_dict())
    fragment_before = copy.deepcopy(fragment.to_dict())

    merge(generated, fragment)

    assert generated.to_dict() == generated_before
    assert fragment.to_dict() == fragment_before


def test_blank_label_values_delete_generated_entries():
    merged = merge_resources(_generated(), _fragment())

    assert merged.labels == {"app": "demo", "version": "2.0", "team": "core"}
    assert "jkube.io/git-commit" not in merged.annotations


def test_nameless_container_aligns_with_first_generated_container():
    outcome = merge(_generated(), _fragment())
    containers = outcome.resource.spec["template"]["spec"]["containers"]

    assert outcome.application_container == "a"
    assert [c["name"] for c in containers] == ["a", "b"]
    assert containers[1] == {"name": "b", "image": "demo/b:latest", "ports": [{"containerPort": 9090}]}


def test_container_fields_are_filled_from_generated_side():
    outcome = merge(_generated(), _fragment())
    container = outcome.resource.spec["template"]["spec"]["containers"][0]

    assert container["image"] == "demo/a:latest"
    assert container["imagePullPolicy"] == "IfNotPresent"
    assert container["env"] == [
        {"name": "HOSTNAME", "value": "override"},
        {"name": "EXTRA", "value": "1"},
        {"name": "KUBERNETES_NAMESPACE", "value": "ns"},
    ]
    # 8080 already exposed as "web", so the generated "http" port is skipped
    assert container["ports"] == [{"name": "web", "containerPort": 8080}, {"containerPort": 8443}]
    assert container["readinessProbe"] == {"exec": {"command": ["true"]}}
    assert container["securityContext"] == {"privileged": False}


def test_fragment_without_containers_takes_generated_containers():
    fragment = ResourceDefinition(
        api_version="apps/v1",
        kind="Deployment",
        metadata={"name": "demo"},
        spec={"replicas": 3, "template": {"spec": {"serviceAccountName": "runner"}}},
    )

    outcome = merge(_generated(), fragment)
    pod = outcome.resource.spec["template"]["spec"]

    assert outcome.resource.spec["replicas"] == 3
    assert pod["serviceAccountName"] == "runner"
    assert [c["name"] for c in pod["containers"]] == ["a", "b"]
    assert outcome.application_container == "a"


def test_sidecar_alignment_matches_by_name():
    fragment = _deployment(
        [
            {"name": "b", "env": [{"name": "SIDE", "value": "car"}]},
            {"name": "logger", "image": "fluent/bit"},
        ]
    )

    outcome = merge(_generated(), fragment, sidecar_enabled=True)
    containers = outcome.resource.spec["template"]["spec"]["containers"]

    assert [c["name"] for c in containers] == ["b", "logger", "a"]
    assert containers[0]["image"] == "demo/b:latest"
    assert containers[0]["env"] == [{"name": "SIDE", "value": "car"}]
    assert containers[2]["image"] == "demo/a:latest"
    assert outcome.application_container == "a"


def test_nameless_fragment_container_gets_default_name_when_generated_has_none():
    generated = ResourceDefinition(api_version="apps/v1", kind="Deployment", metadata={"name": "demo"}, spec={})
    fragment = _deployment([{"image": "demo/app:1.0"}])

    outcome = merge(generated, fragment, default_name="my-artifact")

    assert outcome.resource.spec["template"]["spec"]["containers"][0]["name"] == "my-artifact"
    assert outcome.application_container == "my-artifact"


def test_local_customisation_switch_keeps_complete_fragment_pod_spec():
    fragment = _deployment([{"name": "custom", "image": "custom/image:1"}])

    merged = merge_resources(_generated(), fragment, switch_on_local_customisation=True)

    assert merged.spec["template"]["spec"] == {"containers": [{"name": "custom", "image": "custom/image:1"}]}


def test_config_map_data_follows_blank_deletion_convention():
    generated = ResourceDefinition.from_dict(
        {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "cfg"}, "data": {"a": "1", "b": "2"}}
    )
    fragment = ResourceDefinition.from_dict(
        {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "cfg"}, "data": {"a": "", "c": "3"}}
    )

    merged = merge_resources(generated, fragment)

    assert merged.to_dict()["data"] == {"b": "2", "c": "3"}


def test_generic_kind_merges_metadata_only():
    generated = ResourceDefinition(
        api_version="v1",
        kind="Service",
        metadata={"name": "svc", "labels": {"app": "demo"}},
        spec={"ports": [{"port": 80}]},
    )
    fragment = ResourceDefinition(
        api_version="v1",
        kind="Service",
        metadata={"name": "svc", "labels": {"expose": "true"}},
        spec={"type": "NodePort"},
    )

    merged = merge_resources(generated, fragment)

    assert merged.labels == {"app": "demo", "expose": "true"}
    assert merged.spec == {"ports": [{"port": 80}]}


def test_kind_mismatch_is_a_configuration_error():
    service = ResourceDefinition(api_version="v1", kind="Service", metadata={"name": "demo"})

    with pytest.raises(ConfigurationError):
        merge(_generated(), service)


def test_merge_resource_lists_keeps_one_resource_per_kind_and_name():
    service = ResourceDefinition(api_version="v1", kind="Service", metadata={"name": "demo"})
    route = ResourceDefinition(api_version="route.openshift.io/v1", kind="Route", metadata={"name": "demo"})

    merged = merge_resource_lists([_generated(), service], [_fragment(), route])

    assert [r.key for r in merged] == [("Deployment", "demo"), ("Service", "demo"), ("Route", "demo")]
    assert merged[0].labels["team"] == "core"


def test_fragment_without_api_version_keeps_generated_api_version():
    fragment = ResourceDefinition.from_dict(
        {"kind": "Deployment", "metadata": {"name": "demo"}, "spec": {"replicas": 2}}
    )
    legacy = ResourceDefinition(
        api_version="extensions/v1beta1", kind="Deployment", metadata={"name": "demo"}, spec={"replicas": 1}
    )

    assert fragment.api_version == "apps/v1"
    assert merge_resources(_generated(), fragment).api_version == "apps/v1"
    assert merge_resources(legacy, fragment).api_version == "extensions/v1beta1"


def test_resource_config_drives_merge_flags():
    fragment = _deployment([{"name": "b", "env": [{"name": "SIDE", "value": "car"}]}])

    outcome = merge(_generated(), fragment, resource_config=ResourceConfig(sidecar=True))
    containers = outcome.resource.spec["template"]["spec"]["containers"]
    assert [c["name"] for c in containers] == ["b", "a"]

    custom = _deployment([{"name": "custom", "image": "custom/image:1"}])
    merged = merge_resource_lists(
        [_generated()], [custom], resource_config=ResourceConfig(switch_on_local_customisation=True)
    )
    assert merged[0].spec["template"]["spec"] == {"containers": [{"name": "custom", "image": "custom/image:1"}]}
