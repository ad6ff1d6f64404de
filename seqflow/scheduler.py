import datetime
import logging
import os
import queue
import shlex
import sys
import tempfile
import threading
import time
import uuid
from collections import OrderedDict, defaultdict
from typing import Any, Dict, Iterable, Iterator, List, Optional, cast

from seqflow.backends.base import SeqflowBackend
from seqflow.backends.db import SeqflowBackendDb
from seqflow.config import Config, Section, SectionProxy, create_config_section
from seqflow.executors.base import Executor, get_executors_from_config
from seqflow.executors.local import LocalExecutor
from seqflow.expression import ABSENT, ChoiceExpression, iter_choice_expressions, resolve_value
from seqflow.file import File
from seqflow.graph import Call, CallGraph
from seqflow.logging import logger as _logger
from seqflow.scripting import Script
from seqflow.utils import format_table, iter_nested_value, trim_string
from seqflow.workflow import OutputBundle

JOB_ACTION_WIDTH = 6  # Width of job action in logs.

DEFAULT_EXECUTOR = "default"
DEFAULT_SCRATCH_ROOT = os.path.join(tempfile.gettempdir(), "seqflow")

# Resources of a job that may be bounded by the [limits] config.
LIMIT_OPTIONS = {"cpu": "cpu", "memory": "memory"}


class SchedulerError(Exception):
    pass


class DryRunResult(Exception):
    pass


class MissingOutputError(Exception):
    """
    A command finished without producing one of its declared output files.
    """

    pass


class TaskFailedError(Exception):
    """
    A job failed on its final attempt, which is fatal to the whole execution.
    """

    def __init__(self, call_name: str, error: Exception, attempts: int):
        self.call_name = call_name
        self.error = error
        self.attempts = attempts
        super().__init__(call_name, error, attempts)

    def __str__(self) -> str:
        return "Call {} failed after {} attempt{}: {}: {}".format(
            self.call_name,
            self.attempts,
            "" if self.attempts == 1 else "s",
            type(self.error).__name__,
            self.error,
        )


def format_arg(arg_name: str, value: Any, max_length: int = 200) -> str:
    """
    Format a Task argument into a string.
    """
    return "{arg_name}={value}".format(
        arg_name=arg_name, value=trim_string(repr(value), max_length=max_length)
    )


def format_task_call(call: Call, args: Optional[Dict[str, Any]] = None) -> str:
    """
    Format a call into a string.

    ```
    flagstat samtools.flagstat(bam=File(path=sample.bam))
    ```
    """
    if args is None:
        args = call.args
    args_text = ", ".join(format_arg(arg_name, value) for arg_name, value in args.items())
    return "{name} {task}({args})".format(
        name=call.name,
        task=call.task.fullname,
        args=args_text,
    )


class Execution:
    """
    An Execution tracks one run of a workflow call graph.
    """

    def __init__(self, graph: CallGraph, id: Optional[str] = None):
        self.id = id or str(uuid.uuid4())
        self.graph = graph


class Job:
    """
    A Job tracks the execution of one :class:`seqflow.graph.Call` through its attempts.
    """

    STATUSES = ["PENDING", "RUNNING", "FAILED", "SKIPPED", "DONE", "TOTAL"]

    def __init__(self, call: Call, execution: Execution, id: Optional[str] = None):
        self.id = id or str(uuid.uuid4())
        self.call = call
        self.execution = execution
        self.status = "SKIPPED" if call.skipped else "PENDING"

        # Number of attempts started so far.
        self.attempt = 0

        # The resolved arguments of the call.
        self.eval_args: Optional[Dict[str, Any]] = None

        # The rendered command and declared outputs.
        self.script: Optional[Script] = None

        # Directory of the current attempt.
        self.workdir: Optional[str] = None

        # Output name -> value, once done.
        self.result: Optional[Dict[str, Any]] = None
        self.error: Optional[Exception] = None

        # True once the job has been queued for its first attempt.
        self.queued = False

        # True while the job holds scheduler resources.
        self.consumed_limits = False

    def __repr__(self) -> str:
        return f"Job(id={self.id}, call_name={self.call.name})"

    def get_option(self, key: str, default: Any = None) -> Any:
        return self.call.get_option(key, default)

    @property
    def max_retries(self) -> int:
        return int(self.get_option("max_retries", 0))

    @property
    def resources(self) -> Dict[str, Any]:
        return {
            "cpu": self.get_option("cpu"),
            "memory": self.get_option("memory"),
            "disk": self.get_option("disk"),
            "image": self.get_option("image"),
            "max_retries": self.max_retries,
        }

    def get_limits(self, limit_names: Iterable[str]) -> Dict[str, float]:
        """
        Returns the resources this job consumes among the limited ones.
        """
        return {
            name: float(self.get_option(LIMIT_OPTIONS[name], 0))
            for name in limit_names
            if name in LIMIT_OPTIONS
        }

    def get_input_files(self) -> List[File]:
        """
        Returns the Files within the resolved arguments.
        """
        if not self.eval_args:
            return []
        return [
            value
            for value in iter_nested_value(list(self.eval_args.values()))
            if isinstance(value, File) and not value.is_stdout
        ]


def get_backend_from_config(backend_config: Optional[SectionProxy] = None) -> SeqflowBackend:
    """
    Parses a seqflow :class:`seqflow.backends.base.SeqflowBackend` from a config object.
    """
    if not backend_config:
        backend_config = create_config_section()
    backend_config = cast(SectionProxy, backend_config)
    if not backend_config.get("db_uri"):
        # By default, use in-memory db and autoload (create schemas).
        backend_config["db_uri"] = "sqlite:///:memory:"
        load = True
    else:
        load = False

    backend = SeqflowBackendDb(config=backend_config)
    if load:
        backend.load()
    return backend


def get_limits_from_config(limits_config: Optional[Section] = None) -> Dict[str, float]:
    """
    Parses resource limits from a config object.
    """
    limits = (
        {key: float(value) for key, value in cast(dict, limits_config).items()}
        if limits_config
        else {}
    )
    unknown = sorted(set(limits) - set(LIMIT_OPTIONS))
    if unknown:
        raise SchedulerError(f"Unknown resource limits: {', '.join(unknown)}")
    return limits


def format_job_statuses(
    job_status_counts: Dict[str, Dict[str, int]],
    timestamp: Optional[datetime.datetime] = None,
) -> Iterator[str]:
    """
    Format a report of job counts per task and status, with a row of totals.
    """
    task_names = sorted(job_status_counts)
    totals = {
        status: sum(job_status_counts[task_name][status] for task_name in task_names)
        for status in Job.STATUSES
    }
    rows: List[List[Any]] = [["TASK"] + Job.STATUSES, ["ALL"] + list(totals.values())]
    for task_name in task_names:
        counts = job_status_counts[task_name]
        rows.append([task_name] + [counts[status] for status in Job.STATUSES])

    timestamp = timestamp or datetime.datetime.now()
    yield f"| JOB STATUS {timestamp:%Y/%m/%d %H:%M:%S}"
    for line in format_table(rows, "l" + "r" * len(Job.STATUSES), min_width=7):
        yield f"| {line}"
    yield ""


def read_text_output(data: Any) -> str:
    """
    Returns the first line of a text output.
    """
    if isinstance(data, bytes):
        data = data.decode("utf8")
    lines = data.strip().splitlines()
    return lines[0].strip() if lines else ""


class Scheduler:
    """
    Scheduler for running the call graph of a workflow.

    Jobs whose inputs are ready are submitted to executors, which run them on
    worker threads. The scheduler logic itself runs on one thread: executors
    report back through the thread safe `done_job` and `reject_job` methods,
    which defer to the scheduler thread through an event queue.

    A failed attempt is retried immediately while the call has retries left.
    The final failure of any job is fatal: no new jobs are started, running
    jobs are allowed to finish, and `run` raises :class:`TaskFailedError`.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        backend: Optional[SeqflowBackend] = None,
        executor: Optional[Executor] = None,
        logger: Optional[Any] = None,
        job_status_interval: Optional[int] = None,
        scratch: Optional[str] = None,
    ):
        self.config = config or Config()
        self.logger = logger or _logger
        scheduler_config = self.config.get("scheduler", {})
        self.job_status_interval: Optional[int] = job_status_interval or int(
            scheduler_config.get("job_status_interval", 20)
        )
        if self.job_status_interval <= 0:
            self.job_status_interval = None
        self.scratch: str = scratch or scheduler_config.get("scratch", DEFAULT_SCRATCH_ROOT)

        self.backend: SeqflowBackend = backend or get_backend_from_config(
            self.config.get("backend")
        )

        # Configured executors may replace the local default one.
        self.executors: Dict[str, Executor] = {}
        self.add_executor(executor or LocalExecutor(DEFAULT_EXECUTOR))
        for configured_executor in get_executors_from_config(self.config.get("executors", {})):
            self.add_executor(configured_executor)

        self.limits: Dict[str, float] = get_limits_from_config(self.config.get("limits"))
        self.limits_used: Dict[str, float] = defaultdict(float)

        # Scheduler state.
        self.thread_id: Optional[int] = None
        self.events_queue: queue.Queue = queue.Queue()
        self._current_execution: Optional[Execution] = None
        self._executor_override: Optional[str] = None
        self._jobs: Dict[str, Job] = OrderedDict()
        self._jobs_pending_limits: List[Job] = []
        # Inferred values to check once their producing call is done, by call name.
        self._choice_checks: Dict[str, List[ChoiceExpression]] = defaultdict(list)
        self._failure: Optional[TaskFailedError] = None

    @property
    def is_running(self) -> bool:
        return self._current_execution is not None

    def clear(self):
        """Release resources"""
        self._jobs.clear()
        self._jobs_pending_limits.clear()
        self._choice_checks.clear()
        self.limits_used.clear()
        self._failure = None
        # Events left over from a failed execution are dropped.
        self.events_queue = queue.Queue()

    def add_executor(self, executor: Executor) -> None:
        """
        Add executor to scheduler.
        """
        self.executors[executor.name] = executor
        executor.set_scheduler(self)

    def load(self) -> None:
        self.backend.load()

    def log(
        self, *messages: Any, indent: int = 0, multiline: bool = False, level: int = logging.INFO
    ) -> None:
        text = " ".join(str(message) for message in messages)
        prefix = " " * indent
        for line in [text] if multiline else text.split("\n"):
            self.logger.log(level, prefix + line)

    def _get_executor_name(self, call: Call) -> str:
        return self._executor_override or call.get_option("executor") or DEFAULT_EXECUTOR

    def validate_graph(self, graph: CallGraph) -> None:
        """
        Check that every active call can be placed before any job starts.
        """
        for call in graph.active_calls():
            executor_name = self._get_executor_name(call)
            if executor_name not in self.executors:
                raise SchedulerError(
                    'Unknown executor "{}" for call {}'.format(executor_name, call.name)
                )

            for limit_name, total in self.limits.items():
                request = float(call.get_option(LIMIT_OPTIONS[limit_name], 0))
                if request > total:
                    raise SchedulerError(
                        f"Call {call.name} requests {limit_name}={request:g} which exceeds "
                        f"the limit {limit_name}={total:g}"
                    )

    def run(
        self,
        graph: CallGraph,
        exec_argv: Optional[List[str]] = None,
        dryrun: bool = False,
        executor: Optional[str] = None,
        execution_id: Optional[str] = None,
    ) -> OutputBundle:
        """
        Run the call graph of a workflow and return its output bundle.

        This function blocks, running the event loop until every active call
        is done or a call has failed.
        """
        if self.is_running:
            raise SchedulerError("Scheduler is already running an execution.")

        self._executor_override = executor
        self.validate_graph(graph)

        if exec_argv is None:
            exec_argv = ["scheduler.run", graph.name]
        self._current_execution = Execution(graph, execution_id)
        self.backend.record_execution(
            self._current_execution.id,
            graph.name,
            exec_argv,
            graph.inputs,
        )
        self.log(
            "Start Execution {exec_id}:  seqflow {argv}".format(
                exec_id=self._current_execution.id,
                argv=" ".join(map(shlex.quote, exec_argv[1:])),
            )
        )

        status = "FAILED"
        try:
            self.clear()
            self.thread_id = threading.get_ident()
            start_time = time.time()

            if dryrun:
                status = "DRYRUN"
                return self._dryrun(graph)

            for executor_ in self.executors.values():
                executor_.start()

            self._start_jobs(graph)
            self._process_events()

            # Log execution duration.
            duration = time.time() - start_time
            self.log(f"Execution duration: {duration:.2f} seconds")

            if self._failure:
                raise self._failure

            bundle = OutputBundle.from_graph(graph, self._lookup_result)
            status = "DONE"
            return bundle
        finally:
            # Stop executors and release execution.
            for executor_ in self.executors.values():
                executor_.stop()
            self.backend.record_execution_end(self._current_execution.id, status)
            self._current_execution = None
            self._executor_override = None

    def _dryrun(self, graph: CallGraph) -> OutputBundle:
        """
        Log the jobs that would run without running them.
        """
        assert self._current_execution
        active_calls = 0
        for call in graph.topological_order():
            if call.skipped:
                self.log(
                    "{action} Call {call_name}:  {reason}".format(
                        action="Skip".ljust(JOB_ACTION_WIDTH),
                        call_name=call.name,
                        reason=call.skip_reason,
                    )
                )
            else:
                active_calls += 1
                self.log(
                    "{action} Call {task_call} on {executor}".format(
                        action="Dryrun".ljust(JOB_ACTION_WIDTH),
                        task_call=format_task_call(call),
                        executor=self._get_executor_name(call),
                    )
                )

        if active_calls:
            self.log(f"Dryrun: {active_calls} jobs would run.")
            raise DryRunResult()
        return OutputBundle.from_graph(graph, self._lookup_result)

    def _add_choice_checks(self, graph: CallGraph) -> None:
        values = [call.args for call in graph if not call.skipped] + [graph.outputs]
        for choice in iter_choice_expressions(values):
            self._choice_checks[choice.ref.call.name].append(choice)

    def _check_choices(self, job: Job) -> None:
        """
        Raises InferenceError if an inferred output of the job is not an allowed value.
        """
        assert job.result is not None
        for choice in self._choice_checks.get(job.call.name, []):
            choice.choice_set.parse(job.result[choice.ref.output_name])

    def _start_jobs(self, graph: CallGraph) -> None:
        assert self._current_execution
        self._add_choice_checks(graph)
        for call in graph.topological_order():
            job = Job(call, self._current_execution)
            self._jobs[call.name] = job
            if call.skipped:
                self.log(
                    "{action} Job {job_id}:  {call_name}: {reason}".format(
                        action="Skip".ljust(JOB_ACTION_WIDTH),
                        job_id=job.id[:8],
                        call_name=call.name,
                        reason=call.skip_reason,
                    )
                )
                self.backend.record_job_end(job, status="SKIPPED")

        for job in list(self._jobs.values()):
            self._check_job_ready(job)

    def _is_finished(self) -> bool:
        running = any(job.status == "RUNNING" for job in self._jobs.values())
        if self._failure:
            # Let running jobs finish before stopping.
            return not running
        pending = any(job.status == "PENDING" for job in self._jobs.values())
        return not running and not pending

    def _process_events(self) -> None:
        """
        Run events posted by executors until every job is finished.

        A status report is logged whenever no event arrives within
        `job_status_interval` seconds, and once at the end.
        """
        while not self._is_finished():
            try:
                event = self.events_queue.get(timeout=self.job_status_interval)
            except queue.Empty:
                self.log_job_statuses()
                continue
            except KeyboardInterrupt:
                self.log("Interrupted, shutting down.")
                sys.exit(1)
            event()

        self.log_job_statuses()

    def get_job_status_report(self) -> List[str]:
        status_counts: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for job in self._jobs.values():
            counts = status_counts[job.call.task.fullname]
            counts[job.status] += 1
            counts["TOTAL"] += 1
        return list(format_job_statuses(status_counts))

    def log_job_statuses(self) -> None:
        self.log("\n".join([""] + self.get_job_status_report() + [""]))

    def _lookup_result(self, call: Call, output_name: str) -> Any:
        """
        Returns the value of a call output once the call's job is done.
        """
        job = self._jobs.get(call.name)
        if call.skipped or (job and job.status == "SKIPPED"):
            return ABSENT
        if not job or job.result is None:
            raise SchedulerError(f"Output {call.name}.{output_name} is not available.")
        return job.result[output_name]

    def _check_job_ready(self, job: Job) -> None:
        """
        Execute a pending job if all of its upstream jobs have finished.
        """
        if job.status != "PENDING" or job.queued:
            return
        upstream_statuses = [
            self._jobs[upstream.name].status for upstream in job.call.upstream_calls()
        ]
        if all(status in ("DONE", "SKIPPED") for status in upstream_statuses):
            job.queued = True
            self._exec_job(job)

    def _is_job_within_limits(self, job_limits: Dict[str, float]) -> bool:
        """
        Helper to determine if a job can be executed under allowed/used limits.
        """
        return all(
            self.limits[limit_name] - self.limits_used[limit_name] - count >= 0
            for limit_name, count in job_limits.items()
        )

    def _consume_resources(self, job: Job) -> None:
        """
        Increments the resource limits used with the job's limits.
        """
        for limit_name, count in job.get_limits(self.limits).items():
            self.limits_used[limit_name] += count
        job.consumed_limits = True

    def _release_resources(self, job: Job) -> None:
        """
        Decrements the resource limits used with the job's limits.
        """
        if not job.consumed_limits:
            return
        for limit_name, count in job.get_limits(self.limits).items():
            self.limits_used[limit_name] -= count
        job.consumed_limits = False

    def _check_jobs_pending_limits(self) -> None:
        """
        Checks whether Jobs pending due to limits can now satisfy limits and run.
        """
        pending_jobs = self._jobs_pending_limits
        self._jobs_pending_limits = []

        # Jobs are checked again as part of restarting them. They may be re-queued.
        for job in pending_jobs:
            self._exec_job_main_thread(job)

    def _exec_job(self, job: Job) -> None:
        """
        Execute a job that is ready.
        """
        # Delay the execution to a new event so we don't interrupt the current event.
        self.events_queue.put(lambda: self._exec_job_main_thread(job))

    def _exec_job_main_thread(self, job: Job) -> None:
        """
        Start the next attempt of a job.

        This function runs on the main scheduler thread.
        """
        # Ensure we are on main scheduler thread.
        assert self.thread_id == threading.get_ident()
        assert self._current_execution

        if self._failure or job.execution is not self._current_execution:
            # Execution is shutting down, so no new jobs start.
            return

        if job.eval_args is None:
            try:
                job.eval_args = resolve_value(job.call.args, self._lookup_result)
                job.script = job.call.task.render(job.eval_args)
            except Exception as error:
                return self._fail_job(job, error)

        job_limits = job.get_limits(self.limits)
        if not self._is_job_within_limits(job_limits):
            self._jobs_pending_limits.append(job)
            return
        self._consume_resources(job)

        job.attempt += 1
        job.status = "RUNNING"
        job.workdir = os.path.join(
            self.scratch, self._current_execution.id, job.call.name, f"attempt-{job.attempt}"
        )
        os.makedirs(job.workdir, exist_ok=True)

        # Record that the job is actually starting.
        self.backend.record_job_start(job)

        executor_name = self._get_executor_name(job.call)
        executor = self.executors[executor_name]
        self.log(
            "{action} Job {job_id}:  {task_call} on {executor}{attempt}".format(
                job_id=job.id[:8],
                action=("Run" if job.attempt == 1 else "Retry").ljust(JOB_ACTION_WIDTH),
                task_call=format_task_call(job.call, job.eval_args),
                executor=executor_name,
                attempt=f" (attempt {job.attempt})" if job.attempt > 1 else "",
            )
        )

        try:
            executor.submit(job)
        except Exception as error:
            self.reject_job(job, error)

    def done_job(self, job: Job, result: Any) -> None:
        """
        Mark a :class:`Job` as successfully done with the command's standard output.

        A primary Executor lifecycle method, hence is thread safe.
        """
        self.events_queue.put(lambda: self._done_job_main_thread(job, result))

    def _collect_outputs(self, job: Job, stdout: Any) -> Dict[str, Any]:
        """
        Gather the declared outputs of a finished attempt.
        """
        assert job.script and job.workdir
        outputs: Dict[str, Any] = OrderedDict()
        for output_name, output_type in job.call.task.outputs.items():
            output_file = job.script.outputs[output_name].abspath(job.workdir)

            if output_type is str:
                data = stdout if output_file.is_stdout else output_file.read()
                outputs[output_name] = read_text_output(data)
            elif not output_file.exists():
                raise MissingOutputError(
                    f"Call {job.call.name} did not produce output "
                    f"'{output_name}': {output_file.path}"
                )
            else:
                outputs[output_name] = output_file
        return outputs

    def _done_job_main_thread(self, job: Job, result: Any) -> None:
        """
        Mark a :class:`Job` as successfully done.

        This function runs on the main scheduler thread. Use
        :method:`Scheduler.done_job()` if calling from another thread.
        """
        # Ensure we are on main scheduler thread.
        assert self.thread_id == threading.get_ident()
        if job.execution is not self._current_execution:
            return

        try:
            job.result = self._collect_outputs(job, result)
            self._check_choices(job)
        except Exception as error:
            job.result = None
            return self._reject_job_main_thread(job, error)

        self._release_resources(job)
        job.status = "DONE"
        self.backend.record_job_end(job, status="DONE")
        self.log(
            "{action} Job {job_id}:  {call_name}".format(
                action="Done".ljust(JOB_ACTION_WIDTH),
                job_id=job.id[:8],
                call_name=job.call.name,
            )
        )

        self._check_jobs_pending_limits()
        assert self._current_execution
        for dependent in self._current_execution.graph.dependents(job.call):
            self._check_job_ready(self._jobs[dependent.name])

    def reject_job(self, job: Job, error: Exception) -> None:
        """
        Reject a :class:`Job` attempt that has failed with an `error`.

        A primary Executor lifecycle method, hence is thread safe.
        """
        self.events_queue.put(lambda: self._reject_job_main_thread(job, error))

    def _reject_job_main_thread(self, job: Job, error: Exception) -> None:
        """
        Reject a :class:`Job` attempt, retrying it if it has retries left.

        This function runs on the main scheduler thread. Use
        :method:`Scheduler.reject_job()` if calling from another thread.
        """
        # Ensure we are on main scheduler thread.
        assert self.thread_id == threading.get_ident()
        if job.execution is not self._current_execution:
            return

        self._release_resources(job)
        job.error = error

        if job.attempt <= job.max_retries and not self._failure:
            self.log(
                "{action} Job {job_id}:  {call_name} attempt {attempt} of {total} failed: "
                "{error}".format(
                    action="Failed".ljust(JOB_ACTION_WIDTH),
                    job_id=job.id[:8],
                    call_name=job.call.name,
                    attempt=job.attempt,
                    total=job.max_retries + 1,
                    error=error,
                ),
                level=logging.WARNING,
            )
            job.status = "PENDING"
            self._exec_job(job)
        else:
            self._fail_job(job, error)

        self._check_jobs_pending_limits()

    def _fail_job(self, job: Job, error: Exception) -> None:
        """
        Finalize a job as failed, which is fatal to the execution.
        """
        job.status = "FAILED"
        job.error = error
        self.log(
            "*** {action} Job {job_id}:  {call_name}: {error}".format(
                action="Reject".ljust(JOB_ACTION_WIDTH),
                job_id=job.id[:8],
                call_name=job.call.name,
                error=error,
            ),
            level=logging.ERROR,
        )
        self.backend.record_job_end(job, status="FAILED", error=repr(error))

        if not self._failure:
            self._failure = TaskFailedError(job.call.name, error, job.attempt)
            running = [
                other.call.name for other in self._jobs.values() if other.status == "RUNNING"
            ]
            if running:
                self.log(f"*** Waiting for running jobs to finish: {', '.join(running)}")
