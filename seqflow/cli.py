import argparse
import datetime
import enum
import importlib
import inspect
import json
import os
import sys
import textwrap
import typing
from argparse import Namespace
from types import ModuleType
from typing import IO, Any, Callable, Dict, List, Optional, Tuple, Union, cast

import yaml
from dateutil.parser import parse as parse_date
from rich.console import Console
from rich.table import Table

import seqflow
from seqflow.backends.db import Execution, SeqflowBackendDb, SeqflowDatabaseError
from seqflow.branching import ValidationError
from seqflow.config import Config, ConfigError
from seqflow.executors.base import ExecutorError
from seqflow.graph import GraphError
from seqflow.logging import log_levels, logger, set_log_level
from seqflow.resolve import InferenceError
from seqflow.scheduler import DryRunResult, Scheduler, SchedulerError, TaskFailedError
from seqflow.scheduler_config import (
    DEFAULT_DB_URI,
    DEFAULT_SCRATCH,
    DEFAULT_SEQFLOW_INI,
    SEQFLOW_CONFIG_DIR,
    SEQFLOW_CONFIG_ENV,
    SEQFLOW_INI_FILE,
    postprocess_config,
)
from seqflow.task import Task, coerce_arg, get_optional_type
from seqflow.utils import add_import_path
from seqflow.workflow import Workflow

SEQFLOW_DESCRIPTION = """\
seqflow {version} -- composes bioinformatics command-line tools into pipelines.
"""

# Exit codes.
EXIT_FAILED = 1
EXIT_INVALID = 2


class SeqflowClientError(Exception):
    pass


class ArgFormatter(argparse.ArgumentDefaultsHelpFormatter, argparse.RawDescriptionHelpFormatter):
    """
    Shows defaults in help text and keeps descriptions as written.
    """

    pass


def format_timedelta(duration: datetime.timedelta) -> str:
    """
    Format a duration as `H:MM:SS.cc`.
    """
    centiseconds = int(round(duration.total_seconds() * 100))
    seconds, centiseconds = divmod(centiseconds, 100)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}:{minutes:02}:{seconds:02}.{centiseconds:02}"


def format_id(id: str, detail: bool = False, prefix: int = 8) -> str:
    return id if detail else id[:prefix]


def find_config_dir(cwd: Optional[str] = None) -> Optional[str]:
    """
    Returns the closest `.seqflow` directory in `cwd` or its parents, if any.
    """
    path = os.path.abspath(cwd or os.getcwd())
    while True:
        config_dir = os.path.join(path, SEQFLOW_CONFIG_DIR)
        if os.path.exists(config_dir):
            return config_dir
        if os.path.dirname(path) == path:
            return None
        path = os.path.dirname(path)


def get_config_dir(config_dir: Optional[str] = None) -> str:
    """
    Get the seqflow config dir.

    In order of precedence: the command line (`config_dir`), the
    `SEQFLOW_CONFIG` environment variable, the closest `.seqflow` directory of
    the working directory or its parents, and lastly `.seqflow` in the working
    directory.
    """
    return (
        config_dir
        or os.environ.get(SEQFLOW_CONFIG_ENV)
        or find_config_dir()
        or SEQFLOW_CONFIG_DIR
    )


def get_config_path(config_dir: Optional[str] = None) -> str:
    return os.path.join(get_config_dir(config_dir), SEQFLOW_INI_FILE)


def setup_config(
    config_dir: Optional[str] = None,
    db_uri: Optional[str] = None,
    initialize: bool = True,
) -> Config:
    """
    Load the seqflow config, writing a default one first if needed.
    """
    config_path = get_config_path(config_dir)

    if not os.path.exists(config_path):
        if not initialize:
            raise SeqflowClientError(f"No seqflow config found at {config_path}")
        os.makedirs(os.path.dirname(config_path) or ".", exist_ok=True)
        with open(config_path, "w") as out:
            out.write(
                DEFAULT_SEQFLOW_INI.format(db_uri=db_uri or DEFAULT_DB_URI, scratch=DEFAULT_SCRATCH)
            )

    config = Config()
    config.read_path(config_path)
    # The config dir is looked up again, since it may have just been created.
    return postprocess_config(config, get_config_dir(config_dir))


def setup_scheduler(config_dir: Optional[str] = None) -> Scheduler:
    """
    Setup a Scheduler from the seqflow config, loading its backend.
    """
    scheduler = Scheduler(config=setup_config(config_dir))
    scheduler.load()
    return scheduler


def get_list_item_type(anno: Any) -> Optional[Any]:
    """
    Returns T if `anno` is List[T], otherwise None.
    """
    if typing.get_origin(anno) is not list:
        return None
    args = typing.get_args(anno)
    return args[0] if args else Any


def make_parse_arg_func(arg_anno: Any, arg_name: str) -> Callable[[str], Any]:
    """
    Returns an argparse `type` function coercing a string to `arg_anno`.

    Invalid values raise ValueError, which argparse reports as a usage error.
    """
    type_name = getattr(arg_anno, "__name__", repr(arg_anno))

    def parse_arg(arg: str) -> Any:
        try:
            return coerce_arg(arg_anno, arg, arg_name)
        except ValidationError as error:
            logger.error(str(error))
            raise

    # argparse names the type in its error messages.
    parse_arg.__name__ = type_name
    return parse_arg


def add_value_arg_parser(
    parser: argparse.ArgumentParser, arg_name: str, anno: Any, default: Any
) -> argparse.Action:
    """
    Add a `--kebab-case` option for a workflow input, parsed by its annotation.

    `Optional[T]` is parsed as `T`. `List[T]` takes one or more values, e.g.
    `--coverage-beds exome.bed panel.bed`. Enums are offered as choices.
    Inputs without an annotation are kept as strings.
    """
    kwargs: Dict[str, Any] = {}
    if anno is None:
        kwargs["type"] = str
    else:
        anno = get_optional_type(anno) or anno
        item_type = get_list_item_type(anno)
        if item_type is not None:
            kwargs["nargs"] = "+"
            anno = item_type
        if inspect.isclass(anno) and issubclass(anno, enum.Enum):
            kwargs["choices"] = list(anno)
        kwargs["type"] = make_parse_arg_func(anno, arg_name)

    return parser.add_argument(
        "--" + arg_name.replace("_", "-"),
        default=default,
        help=" ",  # Force default value help text.
        **kwargs,
    )


def import_script(filename_or_module: str, add_cwd: bool = True) -> ModuleType:
    """
    Import a workflow script as a module.

    Parameters
    ----------
    filename_or_module : str
        A path to a python script (e.g. `path/to/workflow.py`), whose directory
        becomes importable, or a dotted module name (e.g.
        `seqflow.pipelines.quality_check`).
    add_cwd : bool
        If True, module names are also looked up in the working directory.
    """
    if filename_or_module.endswith(".py"):
        add_import_path(os.path.dirname(os.path.realpath(filename_or_module)))
        module_name = os.path.splitext(os.path.basename(filename_or_module))[0]
    else:
        if add_cwd:
            add_import_path(os.getcwd())
        module_name = filename_or_module

    try:
        return importlib.import_module(module_name)
    except ModuleNotFoundError as error:
        # Errors from imports within the script itself are left as is.
        if error.name != module_name:
            raise
        raise SeqflowClientError(f"Cannot find Python script file or module: {filename_or_module}")


def get_module_members(module: ModuleType, kind: type) -> List[Any]:
    """
    Returns the Tasks or Workflows defined at the top level of a module, by fullname.
    """
    members = {
        id(value): value for value in vars(module).values() if isinstance(value, kind)
    }
    return sorted(members.values(), key=lambda member: member.fullname)


def get_workflow(module: ModuleType, name: str) -> Workflow:
    """
    Find a workflow within a module by attribute name or fullname.
    """
    workflow = getattr(module, name, None)
    if isinstance(workflow, Workflow):
        return workflow

    for workflow in get_module_members(module, Workflow):
        if workflow.fullname == name:
            return workflow

    raise SeqflowClientError(f'Unknown workflow "{name}" in {module.__name__}')


def get_workflow_arg_parser(workflow: Workflow) -> Tuple[argparse.ArgumentParser, Dict[str, str]]:
    """
    Returns a CLI parser for the inputs of a seqflow Workflow.

    Defaults are left out of the parser, so that only explicitly given inputs
    are returned. Workflow defaults still apply when the graph is built.
    """
    parser = argparse.ArgumentParser(
        prog=workflow.fullname,
        description=workflow.__doc__,
        formatter_class=ArgFormatter,
        allow_abbrev=False,
    )

    cli2arg = {}
    for param in workflow.get_input_params():
        opt = add_value_arg_parser(
            parser,
            param.name,
            param.annotation if param.annotation is not param.empty else None,
            None,
        )
        cli2arg[opt.dest] = param.name

    return parser, cli2arg


def read_inputs_file(path: str) -> Dict[str, Any]:
    """
    Read workflow inputs from a YAML (or JSON) file.
    """
    try:
        with open(path) as infile:
            inputs = yaml.safe_load(infile)
    except OSError as error:
        raise ValidationError(f"Cannot read inputs file {path}: {error}")
    except yaml.YAMLError as error:
        raise ValidationError(f"Invalid inputs file {path}: {error}")

    if inputs is None:
        return {}
    if not isinstance(inputs, dict) or not all(isinstance(key, str) for key in inputs):
        raise ValidationError(
            f"Inputs file {path} must contain a mapping of input names to values."
        )
    return inputs


class SeqflowClient:
    """
    Command-line (CLI) client for interacting with seqflow.
    """

    def __init__(self, stdout: IO = sys.stdout, stderr: IO = sys.stderr):
        self.scheduler: Optional[Scheduler] = None
        self.stdout: IO = stdout
        self.stderr: IO = stderr

    def get_scheduler(self, args: Namespace) -> Scheduler:
        if not self.scheduler:
            self.scheduler = setup_scheduler(args.config)
        return self.scheduler

    def get_backend(self, args: Namespace) -> SeqflowBackendDb:
        scheduler = self.get_scheduler(args)
        if not isinstance(scheduler.backend, SeqflowBackendDb):
            raise SeqflowClientError("Run history requires a database backend.")
        return scheduler.backend

    def execute(self, argv: Optional[List[str]] = None) -> Any:
        """
        Execute a command from the command line.
        """
        if argv is None:
            argv = sys.argv

        parser = self.get_command_parser()
        args, extra_args = parser.parse_known_args(argv[1:])

        if args.log_level:
            set_log_level(args.log_level)

        return args.func(args, extra_args, argv)

    def display(self, *messages: Any, indent: int = 0) -> None:
        """
        Write a line of text to standard output.
        """
        text = textwrap.indent(" ".join(str(message) for message in messages), " " * indent)
        try:
            self.stdout.write(text + "\n")
        except BrokenPipeError:
            # The reader (e.g. `head`) has gone away.
            sys.stderr.close()
            sys.exit()

    def display_table(self, table: Table) -> None:
        # Tables written to files and pipes are not wrapped to a terminal width.
        width = None if self.stdout.isatty() else 200
        console = Console(file=self.stdout, width=width)
        console.print(table)

    def get_command_parser(self) -> argparse.ArgumentParser:
        """
        Returns the command line parser.
        """
        parser = argparse.ArgumentParser(
            prog="seqflow",
            formatter_class=ArgFormatter,
            description=SEQFLOW_DESCRIPTION.format(version=seqflow.__version__),
        )
        parser.add_argument("-c", "--config", help="seqflow configuration directory.")
        parser.add_argument("-V", "--version", action="store_true", help="Show seqflow version.")
        parser.add_argument(
            "--log-level",
            default="INFO",
            choices=log_levels.keys(),
            help="Set seqflow logging level.",
        )
        parser.set_defaults(func=self.help_command)
        subparsers = parser.add_subparsers()

        # Help command.
        help_parser = subparsers.add_parser("help", help="Show help information.")
        help_parser.set_defaults(func=self.help_command)

        # Init command.
        init_parser = subparsers.add_parser(
            "init", help="Initialize a seqflow configuration directory."
        )
        init_parser.set_defaults(func=self.init_command)

        # Run command.
        run_parser = subparsers.add_parser(
            "run",
            allow_abbrev=False,
            help="Run a workflow. Workflow inputs follow as --name value.",
        )
        run_parser.add_argument("--dryrun", action="store_true", help="Perform a dry run.")
        run_parser.add_argument(
            "--executor", help="Run every job on this executor instead of the task's executor."
        )
        run_parser.add_argument(
            "--execution-id",
            help="If provided, the execution id. Must not have been used previously.",
        )
        self._add_workflow_args(run_parser)
        run_parser.set_defaults(func=self.run_command)

        # Validate command.
        validate_parser = subparsers.add_parser(
            "validate",
            allow_abbrev=False,
            help="Validate workflow inputs and composition without running any job.",
        )
        self._add_workflow_args(validate_parser)
        validate_parser.set_defaults(func=self.validate_command)

        # Graph command.
        graph_parser = subparsers.add_parser(
            "graph", allow_abbrev=False, help="Show the call graph of a workflow invocation."
        )
        graph_parser.add_argument(
            "--format", default="text", choices=["text", "dot"], help="Output format."
        )
        self._add_workflow_args(graph_parser)
        graph_parser.set_defaults(func=self.graph_command)

        # Tasks command.
        tasks_parser = subparsers.add_parser(
            "tasks", help="List the tasks and workflows of a module."
        )
        tasks_parser.add_argument("script", help="Python script or module to import.")
        tasks_parser.set_defaults(func=self.tasks_command)

        # Log command.
        log_parser = subparsers.add_parser("log", help="Show information on historical runs.")
        log_parser.add_argument(
            "--since", help="Only show executions started at or after this date."
        )
        log_parser.add_argument("exec_id", nargs="?", help="Execution id (or id prefix).")
        log_parser.set_defaults(func=self.log_command)

        return parser

    def _add_workflow_args(self, parser: argparse.ArgumentParser) -> None:
        parser.add_argument("script", help="Python script or module to import.")
        parser.add_argument("workflow", help="Workflow within script.")
        parser.add_argument(
            "-i",
            "--inputs",
            help="YAML or JSON file of workflow inputs. Inputs given as command line "
            "arguments override the contents of this file.",
        )

    def help_command(self, args: Namespace, extra_args: List[str], argv: List[str]) -> None:
        """
        Show the version, or the full help.
        """
        self.display(
            seqflow.__version__ if args.version else self.get_command_parser().format_help()
        )

    def init_command(self, args: Namespace, extra_args: List[str], argv: List[str]) -> None:
        """
        Create a config directory, `./.seqflow` unless a base directory is given.
        """
        if not args.config:
            args.config = os.path.join(extra_args[0] if extra_args else ".", SEQFLOW_CONFIG_DIR)
        self.get_scheduler(args)
        self.display(f"Initialized seqflow config directory: {args.config}")

    def get_workflow_inputs(
        self, workflow: Workflow, args: Namespace, extra_args: List[str]
    ) -> Dict[str, Any]:
        """
        Determine workflow inputs from an inputs file and command line arguments.
        """
        inputs: Dict[str, Any] = {}
        if args.inputs:
            inputs.update(read_inputs_file(args.inputs))

        parser, cli2arg = get_workflow_arg_parser(workflow)
        workflow_args = parser.parse_args(extra_args)
        for dest, arg in cli2arg.items():
            value = getattr(workflow_args, dest)
            if value is not None:
                inputs[arg] = value
        return inputs

    def build_workflow(self, args: Namespace, extra_args: List[str]) -> Tuple[Workflow, Any]:
        """
        Import the requested workflow and build its call graph.
        """
        module = import_script(args.script)
        workflow = get_workflow(module, args.workflow)
        inputs = self.get_workflow_inputs(workflow, args, extra_args)
        return workflow, workflow.build(**inputs)

    def run_command(self, args: Namespace, extra_args: List[str], argv: List[str]) -> Any:
        """
        Performs the run command.

        The output bundle of the workflow is displayed as JSON.
        """
        workflow, graph = self.build_workflow(args, extra_args)
        scheduler = self.get_scheduler(args)

        try:
            bundle = scheduler.run(
                graph,
                exec_argv=argv,
                dryrun=args.dryrun,
                executor=args.executor,
                execution_id=args.execution_id,
            )
        except DryRunResult:
            return None

        self.display(json.dumps(bundle.to_dict(), indent=2, sort_keys=True))
        return bundle

    def validate_command(self, args: Namespace, extra_args: List[str], argv: List[str]) -> None:
        """
        Build a workflow graph and check it can be scheduled.
        """
        workflow, graph = self.build_workflow(args, extra_args)
        self.get_scheduler(args).validate_graph(graph)

        branches = ", ".join(graph.branch_set) if graph.branch_set is not None else ""
        self.display(
            "Workflow {name} is valid: {active} active calls, {skipped} skipped calls.".format(
                name=workflow.fullname,
                active=len(graph.active_calls()),
                skipped=len(graph.skipped_calls()),
            )
        )
        if branches:
            self.display(f"Branches: {branches}")

    def graph_command(self, args: Namespace, extra_args: List[str], argv: List[str]) -> None:
        """
        Display the call graph of a workflow invocation.
        """
        workflow, graph = self.build_workflow(args, extra_args)
        lines = graph.format_dot() if args.format == "dot" else graph.format_text()
        for line in lines:
            self.display(line)

    def tasks_command(self, args: Namespace, extra_args: List[str], argv: List[str]) -> None:
        """
        List the tasks and workflows of a module.
        """
        module = import_script(args.script)
        members: List[Union[Task, Workflow]] = [
            *get_module_members(module, Workflow),
            *get_module_members(module, Task),
        ]
        if not members:
            self.display(f"No tasks or workflows in {module.__name__}")
            return

        table = Table(title=f"Tasks in {module.__name__}")
        for column in ["Name", "Kind", "Image", "Memory", "Disk", "CPU", "Retries", "Outputs"]:
            table.add_column(column)

        for member in members:
            if isinstance(member, Workflow):
                table.add_row(
                    member.fullname, "workflow", "", "", "", "", "", ", ".join(member.outputs)
                )
                continue
            options = member.get_task_options()
            table.add_row(
                member.fullname,
                "task",
                options.get("image") or "",
                f"{options['memory']:g}",
                f"{options['disk']:g}",
                f"{options['cpu']:g}",
                str(options["max_retries"]),
                ", ".join(member.outputs),
            )
        self.display_table(table)

    def log_command(self, args: Namespace, extra_args: List[str], argv: List[str]) -> None:
        """
        Performs the log command.

        Without an execution id, recent executions are listed. With one, the
        jobs of that execution are shown.
        """
        backend = self.get_backend(args)

        if args.exec_id:
            try:
                execution = backend.find_execution(args.exec_id)
            except SeqflowDatabaseError as error:
                raise SeqflowClientError(str(error))
            if not execution:
                raise SeqflowClientError(f'Unknown execution "{args.exec_id}"')
            self.log_execution(execution)
            return

        since: Optional[datetime.datetime] = None
        if args.since:
            try:
                since = parse_date(args.since)
            except (ValueError, OverflowError) as error:
                raise SeqflowClientError(f"Invalid date {args.since!r}: {error}")

        executions = backend.get_executions(since=since)
        if not executions:
            self.display("No executions found.")
            return

        table = Table(title="Recent executions")
        for column in ["Execution", "Workflow", "Status", "Start", "Duration", "Jobs"]:
            table.add_column(column)
        for execution in executions:
            table.add_row(
                format_id(execution.id),
                execution.workflow,
                execution.status,
                execution.start_time.strftime("%Y-%m-%d %H:%M:%S"),
                format_timedelta(execution.duration) if execution.duration else "",
                str(len(execution.jobs)),
            )
        self.display_table(table)

    def log_execution(self, execution: Execution) -> None:
        """
        Display an Execution and its jobs.
        """
        self.display(
            "Exec {id} [{status}] {start}:  {args}".format(
                id=execution.id,
                status=execution.status,
                start=execution.start_time.strftime("%Y-%m-%d %H:%M:%S"),
                args=" ".join(cast(List[str], execution.args)[1:]),
            )
        )
        self.display(f"Workflow: {execution.workflow}")
        if execution.duration:
            self.display(f"Duration: {format_timedelta(execution.duration)}")

        table = Table()
        for column in ["Job", "Call", "Task", "Status", "Attempts", "Duration", "Error"]:
            table.add_column(column)
        for job in execution.jobs:
            table.add_row(
                format_id(job.id),
                job.call_name,
                job.task_name,
                job.status,
                str(job.attempts),
                format_timedelta(job.duration) if job.duration else "",
                job.error or "",
            )
        self.display_table(table)


def main(argv: Optional[List[str]] = None) -> None:
    """
    Run the seqflow command line, mapping errors to exit codes.

    Invalid inputs and workflow composition errors exit with 2. Failed tasks
    and other errors exit with 1.
    """
    client = SeqflowClient()
    try:
        client.execute(argv)
    except (ValidationError, GraphError) as error:
        logger.error(f"{type(error).__name__}: {error}")
        sys.exit(EXIT_INVALID)
    except (
        TaskFailedError,
        InferenceError,
        ConfigError,
        SchedulerError,
        ExecutorError,
        SeqflowClientError,
    ) as error:
        logger.error(f"{type(error).__name__}: {error}")
        sys.exit(EXIT_FAILED)
