from unittest.mock import MagicMock

import pytest

from jkube_kit.config import (
    AssemblyLayer,
    BuildConfiguration,
    BuildRecreateMode,
    BuildServiceConfig,
    BuildStrategyKind,
    Dependency,
    ImageConfiguration,
    ImagePullPolicy,
    JavaProject,
    JKubeConfig,
    JKubeConfiguration,
    Plugin,
    RegistryConfig,
)
from jkube_kit.docker import DockerAccess, RegistryService
from jkube_kit.exceptions import AuthenticationError, ConfigurationError, JKubeServiceError, TransientRegistryError
from jkube_kit.operations.build import BuildOperations, build_and_push
from jkube_kit.resources.base import ResourceDefinition
from jkube_kit.runner import CommandResult
from jkube_kit.strategies.base import BuildServiceHub, generate_dockerfile, prepare_build_context
from jkube_kit.strategies.buildpacks import BuildpacksBuildStrategy, resolve_builder_image
from jkube_kit.strategies.docker import DockerBuildStrategy
from jkube_kit.strategies.jib import JibBuildStrategy, jib_build_file
from jkube_kit.strategies.s2i import S2IBuildStrategy
from jkube_kit.strategies.selector import select_strategy
from jkube_kit.strategies.spring import SpringBuildStrategy, is_spring_boot_build_image_supported
from jkube_kit.summary import SummaryRecorder


def _spring_project(tmp_path, version="3.2.0", plugin="spring-boot-maven-plugin"):
    return JavaProject(
        base_directory=tmp_path,
        dependencies=[Dependency(group_id="org.springframework.boot", artifact_id="spring-boot", version=version)],
        plugins=[Plugin(group_id="org.springframework.boot", artifact_id=plugin)],
    )


def _hub(tmp_path, project=None, cluster=None, **service) -> BuildServiceHub:
    summary = SummaryRecorder()
    summary.init_summary(tmp_path / "missing-output")
    docker_access = MagicMock()
    docker_access.has_image.return_value = False
    docker_access.image_id.return_value = "sha256:abc"
    return BuildServiceHub(
        configuration=JKubeConfiguration(project=project or JavaProject(base_directory=tmp_path)),
        build_service_config=BuildServiceConfig(**service),
        summary=summary,
        runner=MagicMock(),
        docker_access=docker_access,
        cluster=cluster,
        environ={"DOCKER_CONFIG": str(tmp_path)},
    )


def _dockerfile_image(tmp_path, name="foo/bar:latest", **build):
    (tmp_path / "Dockerfile").write_text("FROM scratch\n")
    return ImageConfiguration(name=name, build=BuildConfiguration(docker_file="Dockerfile", **build))


def _assembly_image(tmp_path, name="foo/bar:latest"):
    app = tmp_path / "app"
    app.mkdir(exist_ok=True)
    (app / "app.jar").write_text("jar")
    return ImageConfiguration(
        name=name,
        build=BuildConfiguration(
            from_image="eclipse-temurin:17",
            assembly=[AssemblyLayer(source=app, target_dir="/deployments")],
            ports=["8080"],
            cmd=["java", "-jar", "/deployments/app.jar"],
        ),
    )


def test_docker_build_and_push_end_to_end(tmp_path):
    hub = _hub(tmp_path)
    image = _dockerfile_image(tmp_path)

    assert BuildOperations(hub).build_and_push([image]) is True

    hub.docker_access.build_image.assert_called_once()
    assert hub.docker_access.build_image.call_args.args[:3] == ("foo/bar:latest", tmp_path, tmp_path / "Dockerfile")
    hub.docker_access.pull_image.assert_not_called()
    hub.docker_access.push_image.assert_called_once_with("foo/bar:latest", None, None, 0)
    summary = hub.summary.summary
    assert summary.build_strategy == "Local Docker"
    assert summary.image_summaries["foo/bar:latest"].image_sha == "sha256:abc"
    assert summary.successful
    assert summary.actions_run == ["build", "push"]


def test_docker_assembly_build_pulls_base_image_and_writes_dockerfile(tmp_path):
    hub = _hub(tmp_path)
    image = _assembly_image(tmp_path)

    DockerBuildStrategy(hub).build(image)

    hub.docker_access.pull_image.assert_called_once_with("eclipse-temurin:17", None, None)
    dockerfile = hub.docker_access.build_image.call_args.args[2]
    content = dockerfile.read_text()
    assert content.startswith("FROM eclipse-temurin:17\n")
    assert "COPY layer-0 /deployments/" in content
    assert (dockerfile.parent / "layer-0" / "app.jar").is_file()


def test_base_image_is_not_pulled_twice_with_always_policy(tmp_path):
    hub = _hub(tmp_path, force_pull=True)
    strategy = DockerBuildStrategy(hub)
    hub.docker_access.has_image.return_value = True

    strategy.build(_assembly_image(tmp_path))
    strategy.build(_assembly_image(tmp_path, name="foo/other:1"))

    assert hub.pull_manager.policy == ImagePullPolicy.ALWAYS
    hub.docker_access.pull_image.assert_called_once()


def test_images_without_build_are_skipped(tmp_path):
    hub = _hub(tmp_path)
    skipped = [
        ImageConfiguration(name="foo/pulled:1"),
        ImageConfiguration(name="foo/skip:1", build=BuildConfiguration(docker_file="Dockerfile", skip=True)),
    ]

    BuildOperations(hub).build_and_push(skipped)

    hub.docker_access.build_image.assert_not_called()
    hub.docker_access.push_image.assert_not_called()


def test_unexpected_errors_are_wrapped(tmp_path):
    hub = _hub(tmp_path)
    hub.docker_access.build_image.side_effect = OSError("disk full")

    with pytest.raises(JKubeServiceError) as excinfo:
        DockerBuildStrategy(hub).build(_dockerfile_image(tmp_path))

    assert isinstance(excinfo.value.__cause__, OSError)


def test_authentication_errors_propagate_unwrapped(tmp_path):
    hub = _hub(tmp_path)
    hub.docker_access.push_image.side_effect = AuthenticationError("denied", "quay.io")
    image = _dockerfile_image(tmp_path)

    with pytest.raises(AuthenticationError):
        DockerBuildStrategy(hub).push([image], 0, hub.configuration.push_registry_config, False)


def test_build_and_push_records_failure_when_summary_enabled(tmp_path):
    hub = _hub(tmp_path)
    image = ImageConfiguration(name="foo/bar:1", build=BuildConfiguration(docker_file="Missing.Dockerfile"))

    assert BuildOperations(hub).build_and_push([image]) is False

    assert not hub.summary.summary.successful
    assert "does not exist" in hub.summary.summary.failure_cause


def test_build_and_push_raises_when_summary_disabled(tmp_path):
    hub = _hub(tmp_path)
    image = ImageConfiguration(name="foo/bar:1", build=BuildConfiguration(docker_file="Missing.Dockerfile"))

    with pytest.raises(ConfigurationError):
        BuildOperations(hub, summary_enabled=False).build_and_push([image])


def test_docker_push_retries_transient_failures():
    runner = MagicMock()
    runner.run.side_effect = [
        CommandResult(success=False, stdout="", stderr="connection reset by peer", returncode=1),
        CommandResult(success=True, stdout="pushed", stderr="", returncode=0),
    ]

    DockerAccess(runner).push_image("foo/bar:latest", None, None, retries=1)

    assert runner.run.call_count == 2


def test_docker_push_gives_up_after_retries():
    runner = MagicMock()
    runner.run.return_value = CommandResult(success=False, stdout="", stderr="i/o timeout", returncode=1)

    with pytest.raises(TransientRegistryError):
        DockerAccess(runner).push_image("foo/bar:latest", None, None, retries=2)

    assert runner.run.call_count == 3


def test_docker_push_does_not_retry_auth_failures():
    runner = MagicMock()
    runner.run.return_value = CommandResult(success=False, stdout="", stderr="unauthorized: login", returncode=1)

    with pytest.raises(AuthenticationError):
        DockerAccess(runner).push_image("quay.io/ns/app:1", None, "quay.io", retries=5)

    assert runner.run.call_count == 1


def test_docker_push_tags_for_target_registry():
    runner = MagicMock()
    runner.run.return_value = CommandResult(success=True, stdout="", stderr="", returncode=0)

    DockerAccess(runner).push_image("ns/app:1", None, "quay.io", retries=0)

    runner.run.assert_any_call(["docker", "tag", "ns/app:1", "quay.io/ns/app:1"], check=True)
    runner.run.assert_called_with(["docker", "push", "quay.io/ns/app:1"])


def test_selector_defaults_to_docker(tmp_path):
    assert isinstance(select_strategy(_hub(tmp_path)), DockerBuildStrategy)


def test_selector_detects_spring_boot_in_cluster_context(tmp_path):
    hub = _hub(tmp_path, project=_spring_project(tmp_path), cluster=MagicMock())

    assert isinstance(select_strategy(hub), SpringBuildStrategy)


def test_selector_uses_docker_for_spring_boot_without_cluster(tmp_path):
    hub = _hub(tmp_path, project=_spring_project(tmp_path))

    assert isinstance(select_strategy(hub), DockerBuildStrategy)


def test_selector_honours_explicit_strategy(tmp_path):
    hub = _hub(tmp_path, project=_spring_project(tmp_path), build_strategy=BuildStrategyKind.JIB)

    assert isinstance(select_strategy(hub), JibBuildStrategy)


def test_selector_rejects_inapplicable_explicit_strategy(tmp_path):
    hub = _hub(tmp_path, build_strategy=BuildStrategyKind.SPRING)

    with pytest.raises(ConfigurationError):
        select_strategy(hub)


@pytest.mark.parametrize(
    "version, plugin, expected",
    [
        ("3.2.0", "spring-boot-maven-plugin", True),
        ("3.0.1", "org.springframework.boot.gradle.plugin", True),
        ("2.7.18", "spring-boot-maven-plugin", False),
        ("3.2.0", "maven-jar-plugin", False),
    ],
)
def test_spring_boot_build_image_support(tmp_path, version, plugin, expected):
    assert is_spring_boot_build_image_supported(_spring_project(tmp_path, version, plugin)) is expected


def test_spring_maven_command(tmp_path):
    project = _spring_project(tmp_path).model_copy(update={"command_execution_args": ["-DskipTests", "clean:clean"]})
    hub = _hub(tmp_path, project=project)

    cmd = SpringBuildStrategy(hub).build_command(ImageConfiguration(name="foo/bar:1"))

    assert cmd == [
        "mvn",
        "org.springframework.boot:spring-boot-maven-plugin:build-image",
        "-f",
        str(tmp_path.absolute()),
        "-Dspring-boot.build-image.imageName=foo/bar:1",
        "-DskipTests",
    ]


def test_spring_gradle_command_prefers_wrapper(tmp_path):
    (tmp_path / "gradlew").write_text("#!/bin/sh\n")
    hub = _hub(tmp_path, project=_spring_project(tmp_path, plugin="org.springframework.boot.gradle.plugin"))
    strategy = SpringBuildStrategy(hub)
    hub.runner.run_streaming.return_value = CommandResult(True, "", "", 0)

    strategy.build(ImageConfiguration(name="foo/bar:1", build=BuildConfiguration()))

    cmd = hub.runner.run_streaming.call_args.args[0]
    assert cmd[:3] == ["./gradlew", "bootBuildImage", "--imageName=foo/bar:1"]
    assert hub.summary.summary.build_strategy == "Spring Boot"


def test_jib_rejects_dockerfile_mode(tmp_path):
    hub = _hub(tmp_path, build_strategy=BuildStrategyKind.JIB)

    with pytest.raises(ConfigurationError):
        JibBuildStrategy(hub).build(_dockerfile_image(tmp_path))

    hub.runner.run_streaming.assert_not_called()


def test_jib_build_file_describes_image(tmp_path):
    image = _assembly_image(tmp_path)

    document = jib_build_file(image, "docker.io/eclipse-temurin:17", tmp_path)

    assert document["from"] == {"image": "docker.io/eclipse-temurin:17"}
    assert document["exposedPorts"] == ["8080"]
    assert document["layers"]["entries"][0]["files"] == [{"src": str(tmp_path / "app"), "dest": "/deployments"}]


def test_jib_build_targets_tarball(tmp_path):
    hub = _hub(tmp_path, build_strategy=BuildStrategyKind.JIB)

    JibBuildStrategy(hub).build(_assembly_image(tmp_path))

    cmd = hub.runner.run_streaming.call_args.args[0]
    assert cmd[:2] == ["jib", "build"]
    assert any(arg.startswith("--target=tar://") for arg in cmd)
    assert "--name=foo/bar:latest" in cmd


def test_jib_push_raises_authentication_error(tmp_path):
    hub = _hub(tmp_path, build_strategy=BuildStrategyKind.JIB)
    hub.runner.run_streaming.return_value = CommandResult(False, "401 Unauthorized", "", 1)

    with pytest.raises(AuthenticationError):
        JibBuildStrategy(hub).push([_assembly_image(tmp_path)], 3, hub.configuration.push_registry_config, False)

    hub.runner.run_streaming.assert_called_once()


def test_buildpacks_builder_from_pack_config(tmp_path):
    (tmp_path / "config.toml").write_text('default-builder-image = "example/builder:tiny"\n')

    assert resolve_builder_image(BuildConfiguration(), tmp_path) == "example/builder:tiny"
    assert resolve_builder_image(BuildConfiguration(buildpacks_builder_image="own/builder"), tmp_path) == "own/builder"
    assert resolve_builder_image(BuildConfiguration(), tmp_path / "absent") == "paketobuildpacks/builder:base"


def test_buildpacks_command(tmp_path):
    hub = _hub(tmp_path, build_strategy=BuildStrategyKind.BUILDPACKS)
    hub.environ["PACK_HOME"] = str(tmp_path / "pack")
    image = ImageConfiguration(
        name="foo/bar:1",
        build=BuildConfiguration(env={"BP_JVM_VERSION": "17"}, tags=["stable"], no_cache=True),
    )

    cmd = BuildpacksBuildStrategy(hub).pack_build_command(image)

    assert cmd[:5] == ["pack", "build", "foo/bar:1", "--builder", "paketobuildpacks/builder:base"]
    assert cmd[cmd.index("--pull-policy") + 1] == "if-not-present"
    assert cmd[cmd.index("--env") + 1] == "BP_JVM_VERSION=17"
    assert cmd[cmd.index("--tag") + 1] == "foo/bar:stable"
    assert cmd[-1] == "--clear-cache"


def test_s2i_requires_cluster(tmp_path):
    hub = _hub(tmp_path, build_strategy=BuildStrategyKind.S2I)

    with pytest.raises(ConfigurationError):
        S2IBuildStrategy(hub).build(_dockerfile_image(tmp_path))


def test_s2i_build_applies_build_objects_and_starts_build(tmp_path):
    cluster = MagicMock()
    cluster.context.namespace = "tenant"
    hub = _hub(tmp_path, cluster=cluster, build_strategy=BuildStrategyKind.S2I, recreate=BuildRecreateMode.ALL)

    S2IBuildStrategy(hub).build(_dockerfile_image(tmp_path))

    deleted = [call.args[1] for call in cluster.delete.call_args_list]
    assert deleted == ["BuildConfig", "ImageStream"]
    applied = [call.args[0] for call in cluster.apply.call_args_list]
    assert [resource.kind for resource in applied] == ["ImageStream", "BuildConfig"]
    build_config = applied[1]
    assert build_config.name == "bar-s2i"
    assert build_config.spec["strategy"]["type"] == "Docker"
    assert build_config.spec["output"]["to"] == {"kind": "ImageStreamTag", "name": "bar:latest"}
    cmd = hub.runner.run_streaming.call_args.args[0]
    assert cmd[:3] == ["oc", "start-build", "bar-s2i"]
    assert cmd[-2:] == ["--namespace", "tenant"]
    assert hub.summary.summary.openshift_build_config_name == "bar-s2i"


def test_s2i_enricher_task_sees_build_objects_before_apply(tmp_path):
    cluster = MagicMock()
    secret = ResourceDefinition(api_version="v1", kind="Secret", metadata={"name": "pull"})

    def enrich(build_objects):
        assert [resource.kind for resource in build_objects] == ["ImageStream", "BuildConfig"]
        build_objects.append(secret)

    hub = _hub(tmp_path, cluster=cluster, build_strategy=BuildStrategyKind.S2I, enricher_task=enrich)

    S2IBuildStrategy(hub).build(_dockerfile_image(tmp_path))

    assert [call.args[0].kind for call in cluster.apply.call_args_list] == ["ImageStream", "BuildConfig", "Secret"]


def test_s2i_source_strategy_for_assembly_builds(tmp_path):
    cluster = MagicMock()
    hub = _hub(tmp_path, cluster=cluster, build_strategy=BuildStrategyKind.S2I, build_output_kind="DockerImage")
    image = _assembly_image(tmp_path)

    build_config = S2IBuildStrategy(hub).build_config(image, "bar-s2i", "Dockerfile")

    assert build_config.spec["strategy"]["sourceStrategy"]["from"] == {"kind": "DockerImage", "name": "eclipse-temurin:17"}
    assert build_config.spec["output"]["to"] == {"kind": "DockerImage", "name": "foo/bar:latest"}


def test_prepare_build_context_rejects_missing_dockerfile(tmp_path):
    image = ImageConfiguration(name="foo/bar:1", build=BuildConfiguration(docker_file="nope/Dockerfile"))

    with pytest.raises(ConfigurationError):
        prepare_build_context(image, JKubeConfiguration(project=JavaProject(base_directory=tmp_path)))


def test_generate_dockerfile_requires_base_image():
    with pytest.raises(ConfigurationError):
        generate_dockerfile(BuildConfiguration(), [])


def test_registry_service_pushes_extra_tags_unless_skipped(tmp_path):
    docker_access = MagicMock()
    summary = SummaryRecorder()
    summary.init_summary(tmp_path / "missing-output")
    service = RegistryService(docker_access, summary, {"DOCKER_CONFIG": str(tmp_path)})
    image = ImageConfiguration(name="ns/app:1", build=BuildConfiguration(tags=["stable"]))

    service.push_image(image, 2, RegistryConfig(registry="quay.io"), skip_tag=False)
    service.push_image(image, 2, RegistryConfig(registry="quay.io"), skip_tag=True)

    assert [call.args for call in docker_access.push_image.call_args_list] == [
        ("ns/app:1", None, "quay.io", 2),
        ("ns/app:stable", None, "quay.io", 2),
        ("ns/app:1", None, "quay.io", 2),
    ]
    assert summary.summary.push_registry == "quay.io"


def test_build_and_push_from_configuration_document(tmp_path):
    (tmp_path / "Dockerfile").write_text("FROM scratch\n")
    config = JKubeConfig(
        project=JavaProject(base_directory=tmp_path),
        images=[ImageConfiguration(name="foo/bar:latest", build=BuildConfiguration(docker_file="Dockerfile"))],
        build_service=BuildServiceConfig(build_strategy=BuildStrategyKind.DOCKER),
        push_registry=RegistryConfig(registry="quay.io"),
        retries=3,
        summary_enabled=False,
    )
    summary = SummaryRecorder()
    summary.init_summary(tmp_path / "missing-output")
    docker_access = MagicMock()
    docker_access.image_id.return_value = "sha256:abc"

    assert build_and_push(
        config, summary, docker_access=docker_access, runner=MagicMock(), environ={"DOCKER_CONFIG": str(tmp_path)}
    )

    docker_access.build_image.assert_called_once()
    docker_access.push_image.assert_called_once_with("foo/bar:latest", None, "quay.io", 3)
    assert BuildOperations.from_config(config, summary).summary_enabled is False
