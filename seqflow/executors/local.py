import typing
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional

from seqflow.config import create_config_section
from seqflow.executors.base import Executor, register_executor
from seqflow.scripting import exec_script

if typing.TYPE_CHECKING:
    from seqflow.scheduler import Job, Scheduler


@register_executor("local")
class LocalExecutor(Executor):
    """
    Runs job commands as bash subprocesses on this machine.

    Each command runs within its job directory. Up to `max_workers` commands
    run at once. The `image` task option is ignored.
    """

    def __init__(
        self,
        name: str,
        scheduler: Optional["Scheduler"] = None,
        config=None,
    ):
        super().__init__(name, scheduler=scheduler)
        config = config or create_config_section()
        self.max_workers = config.getint("max_workers", 20)
        self._pool: Optional[ThreadPoolExecutor] = None

    def _get_pool(self) -> ThreadPoolExecutor:
        # Threads are only spawned once a job is submitted.
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix=f"seqflow-{self.name}"
            )
        return self._pool

    def stop(self) -> None:
        if self._pool:
            self._pool.shutdown()
            self._pool = None

    def get_wrapper(self, job: "Job") -> Optional[List[str]]:
        """
        Returns the argv prefix used to run the job's command file.
        """
        return None

    def submit(self, job: "Job") -> None:
        assert self._scheduler and job.script
        scheduler = self._scheduler
        wrapper = self.get_wrapper(job)

        def report(future: Future) -> None:
            try:
                result = future.result()
            except Exception as error:
                scheduler.reject_job(job, error)
            else:
                scheduler.done_job(job, result)

        future = self._get_pool().submit(exec_script, job.script.command, job.workdir, wrapper)
        future.add_done_callback(report)
