"""Unit tests for docker container helpers."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from floe_elasticsearch.containers import (
    DockerContainer,
    DockerNetwork,
    is_docker_available,
    run_docker,
    wait_for_condition,
)
from floe_elasticsearch.errors import ContainerError


def completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestWaitForCondition:
    def test_condition_met(self) -> None:
        assert wait_for_condition(lambda: True, timeout=1, poll_interval=0.01) is True

    def test_timeout(self) -> None:
        assert wait_for_condition(lambda: False, timeout=0.05, poll_interval=0.01) is False

    def test_exceptions_count_as_not_ready(self) -> None:
        calls = []

        def condition() -> bool:
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("refused")
            return True

        assert wait_for_condition(condition, timeout=1, poll_interval=0.01) is True
        assert len(calls) == 3


class TestRunDocker:
    @patch("floe_elasticsearch.containers.subprocess.run")
    def test_returns_stdout(self, mock_run: MagicMock) -> None:
        mock_run.return_value = completed(stdout="abc123\n")

        assert run_docker("run", "-d", "image") == "abc123"
        mock_run.assert_called_once_with(
            ["docker", "run", "-d", "image"], capture_output=True, text=True, check=False
        )

    @patch("floe_elasticsearch.containers.subprocess.run")
    def test_failure_raises(self, mock_run: MagicMock) -> None:
        mock_run.return_value = completed(returncode=125, stderr="port is already allocated\n")

        with pytest.raises(ContainerError) as exc_info:
            run_docker("run", "image", container="floe-es-elasticsearch")

        assert exc_info.value.container == "floe-es-elasticsearch"
        assert exc_info.value.stderr == "port is already allocated"

    @patch("floe_elasticsearch.containers.subprocess.run", side_effect=FileNotFoundError("docker"))
    def test_missing_cli(self, mock_run: MagicMock) -> None:
        with pytest.raises(ContainerError, match="Cannot run docker"):
            run_docker("info")


class TestDockerAvailability:
    @patch("floe_elasticsearch.containers.shutil.which", return_value=None)
    def test_no_cli(self, mock_which: MagicMock) -> None:
        assert is_docker_available() is False

    @patch("floe_elasticsearch.containers.subprocess.run")
    @patch("floe_elasticsearch.containers.shutil.which", return_value="/usr/bin/docker")
    def test_daemon_down(self, mock_which: MagicMock, mock_run: MagicMock) -> None:
        mock_run.return_value = completed(returncode=1)

        assert is_docker_available() is False


class TestDockerContainer:
    def test_run_args(self) -> None:
        container = DockerContainer(
            name="floe-es-coordinator",
            image="trinodb/trino:462",
            network="floe-es-net",
            ports={8080: 8080},
            env={"B": "2", "A": "1"},
            volumes={"/tmp/config.properties": "/etc/trino/config.properties"},
        )

        assert container.run_args() == [
            "run", "-d",
            "--name", "floe-es-coordinator",
            "--hostname", "floe-es-coordinator",
            "--network", "floe-es-net",
            "-p", "8080:8080",
            "-e", "A=1",
            "-e", "B=2",
            "-v", "/tmp/config.properties:/etc/trino/config.properties:ro",
            "trinodb/trino:462",
        ]  # fmt: skip

    @patch("floe_elasticsearch.containers.run_docker", return_value="abc123")
    def test_start_and_stop(self, mock_docker: MagicMock) -> None:
        container = DockerContainer(name="worker", image="trinodb/trino:462")

        container.start()
        container.stop()

        assert container.container_id is None
        mock_docker.assert_called_with("rm", "-f", "worker", container="worker")

    @patch("floe_elasticsearch.containers.subprocess.run")
    def test_failed_run_removes_created_container(self, mock_run: MagicMock) -> None:
        """Test a container created by a failed docker run does not keep its name."""
        mock_run.side_effect = [completed(returncode=125, stderr="port is already allocated"), completed()]
        container = DockerContainer(name="floe-es-elasticsearch", image="elasticsearch:8.15.0", ports={9200: 9200})

        with pytest.raises(ContainerError, match="exit code 125"):
            container.start()

        commands = [c.args[0][:2] for c in mock_run.call_args_list]
        assert commands == [["docker", "run"], ["docker", "rm"]]
        assert mock_run.call_args.args[0] == ["docker", "rm", "-f", "floe-es-elasticsearch"]
        assert container.container_id is None

    @patch("floe_elasticsearch.containers.subprocess.run")
    def test_failed_run_without_created_container(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = [
            completed(returncode=125, stderr="pull access denied"),
            completed(returncode=1, stderr="Error response from daemon: No such container: worker"),
        ]
        container = DockerContainer(name="worker", image="missing:latest")

        with pytest.raises(ContainerError) as exc_info:
            container.start()

        assert exc_info.value.stderr == "pull access denied"

    @patch("floe_elasticsearch.containers.run_docker")
    def test_stop_without_start_is_noop(self, mock_docker: MagicMock) -> None:
        DockerContainer(name="worker", image="trinodb/trino:462").stop()

        mock_docker.assert_not_called()


class TestDockerNetwork:
    @patch("floe_elasticsearch.containers.run_docker", return_value="")
    def test_context_manager(self, mock_docker: MagicMock) -> None:
        with DockerNetwork("floe-es-net") as network:
            assert network.created is True

        assert network.created is False
        assert [c.args for c in mock_docker.call_args_list] == [
            ("network", "create", "floe-es-net"),
            ("network", "rm", "floe-es-net"),
        ]
