import pytest

from seqflow import File, Script, build_graph, script, task
from seqflow.config import Config, create_config_section
from seqflow.executors.base import (
    Executor,
    ExecutorError,
    get_executor_class,
    get_executors_from_config,
    register_executor,
)
from seqflow.executors.docker import DockerExecutor, get_docker_command
from seqflow.executors.local import LocalExecutor
from seqflow.scheduler import Execution, Job


@task(image="quay.io/biocontainers/samtools:1.17", memory=2, cpu=2, outputs={"out": File})
def flagstat(bam: File) -> Script:
    return script(f"samtools flagstat {bam} > out.txt", outputs={"out": File("out.txt")})


@task(outputs={"out": File})
def no_image(bam: File) -> Script:
    return script(f"cp {bam} out.txt", outputs={"out": File("out.txt")})


def make_job(task_, workdir: str, **args) -> Job:
    with build_graph() as builder:
        call = task_(**args)
    job = Job(call, Execution(builder.graph))
    job.eval_args = call.args
    job.workdir = workdir
    return job


def test_executor_registry() -> None:
    assert get_executor_class("local") is LocalExecutor
    assert get_executor_class("docker") is DockerExecutor
    assert get_executor_class("batch", required=False) is None
    with pytest.raises(ExecutorError):
        get_executor_class("batch")

    @register_executor("custom_test")
    class CustomExecutor(Executor):
        pass

    assert get_executor_class("custom_test") is CustomExecutor

    # Executors registered by path are imported on first use.
    register_executor("lazy_local_test", "seqflow.executors.local.LocalExecutor")
    assert get_executor_class("lazy_local_test") is LocalExecutor


def test_executors_from_config() -> None:
    config = Config(
        {
            "executors.default": {"type": "local", "max_workers": "2"},
            "executors.docker": {"type": "docker", "image": "ubuntu:22.04", "cleanup": "false"},
        }
    )
    executors = {
        executor.name: executor for executor in get_executors_from_config(config["executors"])
    }

    assert isinstance(executors["default"], LocalExecutor)
    assert executors["default"].max_workers == 2
    docker = executors["docker"]
    assert isinstance(docker, DockerExecutor)
    assert docker.default_image == "ubuntu:22.04"
    assert not docker.cleanup

    with pytest.raises(ExecutorError):
        list(get_executors_from_config({"bad": create_config_section({"image": "x"})}))


def test_get_docker_command() -> None:
    command = get_docker_command(
        "ubuntu:22.04",
        "/scratch/exec/call/attempt-1",
        volumes=[("/data", "/data")],
        memory=8,
        cpus=2,
    )
    assert command == [
        "docker",
        "run",
        "--rm",
        "-v",
        "/scratch/exec/call/attempt-1:/scratch/exec/call/attempt-1",
        "-v",
        "/data:/data:ro",
        "-w",
        "/scratch/exec/call/attempt-1",
        "--memory=8g",
        "--cpus=2",
        "ubuntu:22.04",
        "bash",
    ]


def test_docker_wrapper() -> None:
    """
    Task resources and input directories shape the container.
    """
    executor = DockerExecutor("docker")
    job = make_job(flagstat, "/scratch/exec/flagstat/attempt-1", bam=File("/data/a.bam"))

    assert executor.get_wrapper(job) == [
        "docker",
        "run",
        "--rm",
        "-v",
        "/scratch/exec/flagstat/attempt-1:/scratch/exec/flagstat/attempt-1",
        "-v",
        "/data:/data:ro",
        "-w",
        "/scratch/exec/flagstat/attempt-1",
        "--memory=2g",
        "--cpus=2",
        "quay.io/biocontainers/samtools:1.17",
        "bash",
    ]


def test_docker_wrapper_image() -> None:
    """
    Tasks without an image use the executor default, if any.
    """
    job = make_job(no_image, "/scratch/job", bam=File("/data/a.bam"))

    with pytest.raises(ExecutorError):
        DockerExecutor("docker").get_wrapper(job)

    executor = DockerExecutor(
        "docker", config=create_config_section({"image": "ubuntu:22.04", "cleanup": "false"})
    )
    wrapper = executor.get_wrapper(job)
    assert "--rm" not in wrapper
    assert "ubuntu:22.04" in wrapper


def test_local_executor_ignores_image() -> None:
    job = make_job(flagstat, "/scratch/job", bam=File("/data/a.bam"))
    assert LocalExecutor("default").get_wrapper(job) is None
