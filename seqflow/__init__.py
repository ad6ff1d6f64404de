from seqflow.branching import BranchSet, Experiment, ValidationError, select_branches
from seqflow.expression import ABSENT, select_all
from seqflow.file import File
from seqflow.graph import GraphError, branch, branch_if, build_graph
from seqflow.resolve import (
    QUALITY_ENCODING,
    STRANDEDNESS,
    ChoiceSet,
    InferenceError,
    provided_or_inferred,
)
from seqflow.scheduler import Scheduler, TaskFailedError
from seqflow.scripting import Script, ScriptError, script
from seqflow.task import Task, task
from seqflow.version import version
from seqflow.workflow import OutputBundle, Workflow, workflow

from seqflow.executors.base import register_executor

# Executor modules are only imported once configured.
register_executor("docker", "seqflow.executors.docker.DockerExecutor")
register_executor("local", "seqflow.executors.local.LocalExecutor")


__version__ = version
__all__ = [
    "ABSENT",
    "BranchSet",
    "ChoiceSet",
    "Experiment",
    "File",
    "GraphError",
    "InferenceError",
    "OutputBundle",
    "QUALITY_ENCODING",
    "STRANDEDNESS",
    "Scheduler",
    "Script",
    "ScriptError",
    "Task",
    "TaskFailedError",
    "ValidationError",
    "Workflow",
    "branch",
    "branch_if",
    "build_graph",
    "provided_or_inferred",
    "script",
    "select_all",
    "select_branches",
    "task",
    "version",
    "workflow",
]
