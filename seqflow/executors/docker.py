import os
import typing
from collections import OrderedDict
from typing import Iterable, List, Optional, Tuple

from seqflow.config import create_config_section
from seqflow.executors.base import ExecutorError, register_executor
from seqflow.executors.local import LocalExecutor

if typing.TYPE_CHECKING:
    from seqflow.scheduler import Job, Scheduler


def get_docker_command(
    image: str,
    workdir: str,
    volumes: Iterable[Tuple[str, str]] = (),
    memory: float = 4,
    cpus: float = 1,
    cleanup: bool = True,
    docker: str = "docker",
) -> List[str]:
    """
    Returns the argv prefix for running a job command file in a Docker container.

    Parameters
    ----------
    image : str
        A Docker image.
    workdir : str
        Job directory. It is mounted at the same path within the container and
        used as the working directory.
    volumes : Iterable[Tuple[str, str]]
        Additional ('host', 'container') path pairs mounted read-only.
    memory : float
        Number of GB of memory to reserve for the container.
    cpus : float
        Number of CPUs to reserve for the container.
    cleanup : bool
        If True, remove the container after execution.
    """
    command = [docker, "run"]
    if cleanup:
        command.append("--rm")

    # Volume mounting args.
    command.extend(["-v", f"{workdir}:{workdir}"])
    for host, container in volumes:
        command.extend(["-v", f"{host}:{container}:ro"])

    command.extend(["-w", workdir, f"--memory={memory:g}g", f"--cpus={cpus:g}", image, "bash"])
    return command


@register_executor("docker")
class DockerExecutor(LocalExecutor):
    """
    A seqflow Executor for running job commands within Docker containers.

    The container image comes from the `image` task option (or the `image`
    config key as a default). The `memory` and `cpu` task options become the
    container limits. Directories of input files are mounted read-only.
    """

    def __init__(
        self,
        name: str,
        scheduler: Optional["Scheduler"] = None,
        config=None,
    ):
        if not config:
            config = create_config_section()
        super().__init__(name, scheduler=scheduler, config=config)

        self.default_image = config.get("image")
        self.docker = config.get("docker", "docker")
        self.cleanup = config.getboolean("cleanup", True)

    def get_wrapper(self, job: "Job") -> Optional[List[str]]:
        image = job.get_option("image") or self.default_image
        if not image:
            raise ExecutorError(
                f"Job {job.call.name} has no image and executor {self.name} has no default image."
            )

        workdir = os.path.abspath(job.workdir)
        volumes: "OrderedDict[str, str]" = OrderedDict()
        for input_file in job.get_input_files():
            dirname = os.path.dirname(os.path.abspath(input_file.path))
            if dirname != workdir:
                volumes[dirname] = dirname

        return get_docker_command(
            image,
            workdir,
            volumes=volumes.items(),
            memory=job.get_option("memory"),
            cpus=job.get_option("cpu"),
            cleanup=self.cleanup,
            docker=self.docker,
        )
