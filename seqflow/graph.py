"""
Call graphs: the static DAG of task invocations of one workflow run.

A workflow body is evaluated once inside a build context. Each task call made in
the body adds a :class:`Call` node. Arguments that reference the outputs of other
calls (:class:`seqflow.expression.OutputRef`) define the edges of the graph.

Calls made inside an inactive branch are kept in the graph but marked skipped.
Skipping propagates along edges: a call whose required input comes from a
skipped call is skipped too, while optional inputs are given `None`.
"""

import threading
import typing
from collections import OrderedDict
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from seqflow.expression import OutputRef, is_absent_value, iter_upstream_calls

if typing.TYPE_CHECKING:
    from seqflow.branching import BranchSet
    from seqflow.task import Task


class GraphError(Exception):
    """
    A workflow is composed incorrectly.
    """

    pass


class CallOutputs:
    """
    Attribute access to the outputs of a call: `call.outputs.bam`.
    """

    def __init__(self, call: "Call"):
        self._call = call

    def __getattr__(self, output_name: str) -> OutputRef:
        if output_name.startswith("_"):
            raise AttributeError(output_name)
        return self._call[output_name]

    def __dir__(self) -> List[str]:
        return list(self._call.task.outputs)


class Call:
    """
    One invocation of a task within a call graph.
    """

    def __init__(
        self,
        name: str,
        task: "Task",
        args: Dict[str, Any],
        branch_tags: Tuple[str, ...] = (),
        skip_reason: Optional[str] = None,
    ):
        self.name = name
        self.task = task
        self.args = args
        self.options = task.get_task_options()
        self.branch_tags = branch_tags
        self.skip_reason = skip_reason

    def __repr__(self) -> str:
        return f"Call(name={self.name}, task={self.task.fullname})"

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    @property
    def outputs(self) -> CallOutputs:
        return CallOutputs(self)

    def __getitem__(self, output_name: str) -> OutputRef:
        if output_name not in self.task.outputs:
            raise GraphError(
                f"Task {self.task.fullname} has no output '{output_name}'. "
                f"Outputs: {', '.join(sorted(self.task.outputs)) or '(none)'}"
            )
        return OutputRef(self, output_name)

    def __getattr__(self, output_name: str) -> OutputRef:
        if output_name.startswith("_") or "task" not in self.__dict__:
            raise AttributeError(output_name)
        return self[output_name]

    def upstream_calls(self) -> List["Call"]:
        """
        Returns the calls whose outputs this call consumes, in argument order.
        """
        seen: Set[int] = set()
        calls = []
        for upstream in iter_upstream_calls(list(self.args.values())):
            if id(upstream) not in seen:
                seen.add(id(upstream))
                calls.append(upstream)
        return calls

    def get_option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)


class CallGraph:
    """
    The DAG of calls of one workflow invocation.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self.calls: Dict[str, Call] = OrderedDict()
        # Branch label -> whether it was active.
        self.branches: Dict[str, bool] = OrderedDict()
        self.branch_set: Optional["BranchSet"] = None
        # Final outputs, set by the workflow: name -> value or expression.
        self.outputs: Dict[str, Any] = OrderedDict()
        self.optional_outputs: Set[str] = set()
        self.inputs: Dict[str, Any] = {}

    def __repr__(self) -> str:
        return f"CallGraph(name={self.name}, calls={len(self.calls)})"

    def __len__(self) -> int:
        return len(self.calls)

    def __iter__(self) -> Iterator[Call]:
        return iter(self.calls.values())

    def __getitem__(self, name: str) -> Call:
        return self.calls[name]

    def __contains__(self, name: str) -> bool:
        return name in self.calls

    def unique_name(self, name: str) -> str:
        """
        Returns `name`, suffixed with `_2`, `_3`, ... if already taken.
        """
        if name not in self.calls:
            return name
        i = 2
        while f"{name}_{i}" in self.calls:
            i += 1
        return f"{name}_{i}"

    def add_call(self, call: Call) -> Call:
        if call.name in self.calls:
            raise GraphError(f"Duplicate call name: {call.name}")
        self.calls[call.name] = call
        return call

    def active_calls(self) -> List[Call]:
        return [call for call in self.calls.values() if not call.skipped]

    def skipped_calls(self) -> List[Call]:
        return [call for call in self.calls.values() if call.skipped]

    def dependents(self, call: Call) -> List[Call]:
        return [
            other
            for other in self.calls.values()
            if any(upstream is call for upstream in other.upstream_calls())
        ]

    def topological_order(self) -> List[Call]:
        """
        Returns all calls ordered so that every call comes after its dependencies.

        Ties are broken by insertion order.
        """
        in_degree: Dict[str, int] = {}
        dependents: Dict[str, List[Call]] = {name: [] for name in self.calls}
        for call in self.calls.values():
            upstreams = call.upstream_calls()
            in_degree[call.name] = len(upstreams)
            for upstream in upstreams:
                if upstream.name not in self.calls or self.calls[upstream.name] is not upstream:
                    raise GraphError(f"Call {call.name} depends on unknown call {upstream.name}")
                dependents[upstream.name].append(call)

        ready = [call for call in self.calls.values() if in_degree[call.name] == 0]
        order: List[Call] = []
        while ready:
            call = ready.pop(0)
            order.append(call)
            for dependent in dependents[call.name]:
                in_degree[dependent.name] -= 1
                if in_degree[dependent.name] == 0:
                    ready.append(dependent)

        if len(order) != len(self.calls):
            cycle = sorted(name for name, degree in in_degree.items() if degree > 0)
            raise GraphError(f"Call graph has a cycle involving: {', '.join(cycle)}")
        return order

    def format_text(self) -> Iterator[str]:
        """
        Yields a human readable listing of the graph.
        """
        if self.branch_set is not None:
            yield "Branches: " + ", ".join(self.branch_set)
        yield f"Calls ({len(self.active_calls())} active, {len(self.skipped_calls())} skipped):"
        for call in self.topological_order():
            line = f"  {call.name} ({call.task.fullname})"
            if call.skipped:
                line += f" SKIPPED: {call.skip_reason}"
            yield line
            upstreams = call.upstream_calls()
            if upstreams:
                yield "    <- " + ", ".join(upstream.name for upstream in upstreams)
        if self.outputs:
            yield "Outputs:"
            for name, value in self.outputs.items():
                optional = " (optional)" if name in self.optional_outputs else ""
                yield f"  {name}{optional}: {value!r}"

    def format_dot(self) -> Iterator[str]:
        """
        Yields the graph in graphviz DOT format.
        """
        yield f'digraph "{self.name or "workflow"}" {{'
        yield "  node [shape=box];"
        for call in self.calls.values():
            style = ', style=dashed, color=gray, label="{} (skipped)"'.format(call.name)
            yield '  "{}" [tooltip="{}"{}];'.format(
                call.name, call.task.fullname, style if call.skipped else ""
            )
        for call in self.calls.values():
            for upstream in call.upstream_calls():
                yield f'  "{upstream.name}" -> "{call.name}";'
        yield "}"


class GraphBuilder:
    """
    Collects calls into a :class:`CallGraph` while a workflow body is evaluated.
    """

    def __init__(self, graph: CallGraph):
        self.graph = graph
        # Stack of (branch label, active) for the branches currently open.
        self._branch_stack: List[Tuple[str, bool]] = []
        self._prefixes: List[str] = []

    @property
    def active(self) -> bool:
        return all(active for _, active in self._branch_stack)

    def push_branch(self, label: str, active: bool) -> None:
        self.graph.branches.setdefault(label, active)
        self._branch_stack.append((label, active))

    def pop_branch(self) -> None:
        self._branch_stack.pop()

    @contextmanager
    def scope(self, prefix: str) -> Iterator[None]:
        """
        Prefix the names of calls added within the block, e.g. for sub-workflows.
        """
        self._prefixes.append(prefix)
        try:
            yield
        finally:
            self._prefixes.pop()

    def add_call(self, task: "Task", args: Tuple, kwargs: dict) -> Call:
        bound = task.bind(args, kwargs, coerce=self.active)
        prefix = "".join(prefix + "." for prefix in self._prefixes)
        name = self.graph.unique_name(prefix + task.name)

        skip_reason: Optional[str] = None
        inactive = [label for label, active in self._branch_stack if not active]
        if inactive:
            skip_reason = f"branch {inactive[0]} is inactive"
        else:
            for arg_name, value in bound.items():
                if not is_absent_value(value):
                    continue
                if task.is_optional_arg(arg_name):
                    bound[arg_name] = None
                else:
                    skipped_upstreams = [
                        upstream.name
                        for upstream in iter_upstream_calls(value)
                        if upstream.skipped
                    ]
                    skip_reason = "input '{}' depends on skipped {}".format(
                        arg_name, ", ".join(skipped_upstreams) or "calls"
                    )
                    break

        call = Call(
            name,
            task,
            bound,
            branch_tags=tuple(label for label, _ in self._branch_stack),
            skip_reason=skip_reason,
        )
        return self.graph.add_call(call)


_local = threading.local()


def get_current_builder(required: bool = True) -> Optional[GraphBuilder]:
    """
    Returns the builder of the graph currently being built on this thread.
    """
    builder = getattr(_local, "builder", None)
    if required and not builder:
        raise GraphError("No workflow graph is being built.")
    return builder


def set_current_builder(builder: Optional[GraphBuilder]) -> None:
    _local.builder = builder


@contextmanager
def build_graph(name: str = "") -> Iterator[GraphBuilder]:
    """
    Context for building a call graph. Task calls within it add calls to the graph.

    .. code-block:: python

        with build_graph("example") as builder:
            stats = samtools_flagstat(bam=File("sample.bam"))
        graph = builder.graph
    """
    previous = get_current_builder(required=False)
    builder = GraphBuilder(CallGraph(name))
    set_current_builder(builder)
    try:
        yield builder
    finally:
        set_current_builder(previous)


@contextmanager
def branch(branches: "BranchSet", tag: str) -> Iterator[bool]:
    """
    Guard the calls made within the block by a branch tag.

    Yields whether the branch is active. Calls made in an inactive branch are
    recorded as skipped.

    .. code-block:: python

        with branch(branches, "rna_seq"):
            qualimap_rnaseq(bam=bam, gtf=gtf)
    """
    builder = get_current_builder()
    assert builder
    if builder.graph.branch_set is None:
        builder.graph.branch_set = branches

    with branch_if(tag, branches.is_active(tag)) as active:
        yield active


@contextmanager
def branch_if(name: str, condition: bool) -> Iterator[bool]:
    """
    Guard the calls made within the block by a condition known at build time.
    """
    if not isinstance(condition, bool):
        # Raises TypeError for lazy outputs, which are unknown at build time.
        condition = bool(condition)

    builder = get_current_builder()
    assert builder
    builder.push_branch(name, condition)
    try:
        yield builder.active
    finally:
        builder.pop_branch()
