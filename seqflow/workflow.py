import enum
import inspect
from collections import OrderedDict
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
    Union,
    overload,
)

from seqflow.branching import ValidationError
from seqflow.expression import ABSENT, ResultLookup, is_absent_value, resolve_value
from seqflow.file import File
from seqflow.graph import CallGraph, GraphError, build_graph, get_current_builder
from seqflow.task import bind_arguments, compute_namespace, get_optional_type
from seqflow.utils import map_nested_value

Func = TypeVar("Func", bound=Callable)


def is_absent_output(value: Any) -> bool:
    return value is None or value is ABSENT or is_absent_value(value)


class WorkflowCall:
    """
    The outputs of a sub-workflow inlined into an enclosing workflow.
    """

    def __init__(self, workflow: "Workflow", outputs: Dict[str, Any]):
        self.workflow = workflow
        self._outputs = outputs

    def __repr__(self) -> str:
        return f"WorkflowCall(workflow={self.workflow.fullname})"

    def __getitem__(self, output_name: str) -> Any:
        if output_name not in self.workflow.outputs:
            raise GraphError(
                f"Workflow {self.workflow.fullname} has no output '{output_name}'. "
                f"Outputs: {', '.join(sorted(self.workflow.outputs))}"
            )
        return self._outputs.get(output_name, ABSENT)

    def __getattr__(self, output_name: str) -> Any:
        if output_name.startswith("_") or "workflow" not in self.__dict__:
            raise AttributeError(output_name)
        return self[output_name]

    @property
    def outputs(self) -> Dict[str, Any]:
        return {name: self[name] for name in self.workflow.outputs}


class OutputBundle(Mapping):
    """
    The named final outputs of a workflow run.

    Optional outputs whose producers were skipped are absent: their names are
    listed in `absent` and they are not keys of the bundle.
    """

    def __init__(self, values: Dict[str, Any], absent: Tuple[str, ...] = ()):
        self._values = OrderedDict(values)
        self.absent = tuple(absent)

    def __repr__(self) -> str:
        return "OutputBundle({})".format(
            ", ".join(f"{key}={value!r}" for key, value in self._values.items())
        )

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def to_dict(self) -> Dict[str, Any]:
        """
        Returns the bundle as JSON-serializable values.
        """

        def convert(value: Any) -> Any:
            if isinstance(value, File):
                return value.path
            elif isinstance(value, enum.Enum):
                return value.value
            return value

        return {key: map_nested_value(convert, value) for key, value in self._values.items()}

    @classmethod
    def from_graph(cls, graph: CallGraph, lookup: ResultLookup) -> "OutputBundle":
        """
        Resolve the declared outputs of a graph using finished call results.
        """
        values = OrderedDict()
        absent = []
        for name, value in graph.outputs.items():
            if is_absent_output(value):
                absent.append(name)
            else:
                values[name] = resolve_value(value, lookup)
        return cls(values, tuple(absent))


class Workflow:
    """
    A composition of task calls with named final outputs.

    Workflows are usually defined with the :func:`workflow` decorator. The
    decorated function receives the workflow inputs, calls tasks and other
    workflows, and returns a dict of its outputs.

    .. code-block:: python

        @workflow(outputs={"flagstat": File, "md5": Optional[File]})
        def bam_stats(bam: File, checksum: bool = False) -> dict:
            outputs = {"flagstat": samtools_flagstat(bam=bam).flagstat}
            with branch_if("checksum", checksum):
                outputs["md5"] = md5sum(file=bam).checksum
            return outputs

    Calling `bam_stats.build(bam="sample.bam")` returns the
    :class:`seqflow.graph.CallGraph` of the invocation. Calling `bam_stats(...)`
    within another workflow inlines its calls.
    """

    def __init__(
        self,
        func: Callable,
        name: Optional[str] = None,
        namespace: Optional[str] = None,
        outputs: Optional[Dict[str, Any]] = None,
    ):
        self.func = func
        self.name = name or func.__name__
        self.namespace = compute_namespace(func, namespace)
        self.__doc__ = func.__doc__

        # Output name -> type, with Optional[T] types marking optional outputs.
        self.outputs: Dict[str, Any] = OrderedDict()
        self.optional_outputs = set()
        for output_name, output_type in (outputs or {}).items():
            optional_type = get_optional_type(output_type)
            if optional_type is not None:
                self.optional_outputs.add(output_name)
                output_type = optional_type
            self.outputs[output_name] = output_type

        self._signature: Optional[inspect.Signature] = None

    def __repr__(self) -> str:
        return f"Workflow(fullname={self.fullname})"

    @property
    def fullname(self) -> str:
        if self.namespace:
            return self.namespace + "." + self.name
        else:
            return self.name

    @property
    def signature(self) -> inspect.Signature:
        if not self._signature:
            self._signature = inspect.signature(self.func)
        return self._signature

    def validate_inputs(self, *args: Any, **inputs: Any) -> Dict[str, Any]:
        """
        Bind and type-check workflow inputs. Raises ValidationError on bad inputs.
        """
        bound = bind_arguments(
            self.signature, self.fullname, args, inputs, error_class=ValidationError
        )

        # Jobs run within their own directories, so input paths must be absolute.
        def abspath(value: Any) -> Any:
            return value.abspath() if isinstance(value, File) else value

        return {name: map_nested_value(abspath, value) for name, value in bound.items()}

    def _check_outputs(self, result: Any, nested: bool) -> Dict[str, Any]:
        if result is None:
            result = {}
        if not isinstance(result, dict):
            raise GraphError(
                f"Workflow {self.fullname} must return a dict of outputs: {result!r}"
            )

        unknown = sorted(set(result) - set(self.outputs))
        if unknown:
            raise GraphError(
                f"Workflow {self.fullname} returned undeclared outputs: {', '.join(unknown)}"
            )

        outputs: Dict[str, Any] = OrderedDict()
        for name in self.outputs:
            value = result.get(name, ABSENT)
            # Inlined workflows pass absence on to the enclosing workflow.
            if not nested and name not in self.optional_outputs and is_absent_output(value):
                raise GraphError(
                    f"Required output '{name}' of workflow {self.fullname} is produced by a "
                    "skipped call or not produced at all."
                )
            outputs[name] = value
        return outputs

    def build(self, *args: Any, **inputs: Any) -> CallGraph:
        """
        Validate inputs and evaluate the workflow into a call graph.
        """
        if get_current_builder(required=False):
            raise GraphError(
                f"Workflow {self.fullname} cannot be built while another graph is being built."
            )

        with build_graph(self.fullname) as builder:
            bound = self.validate_inputs(*args, **inputs)
            result = self.func(**bound)

        graph = builder.graph
        graph.inputs = bound
        graph.outputs = self._check_outputs(result, nested=False)
        graph.optional_outputs = set(self.optional_outputs)
        graph.topological_order()
        return graph

    def __call__(self, *args: Any, **kwargs: Any) -> WorkflowCall:
        builder = get_current_builder(required=False)
        if not builder:
            raise GraphError(
                f"Workflow {self.fullname} can only be called within another workflow. "
                "Use .build() to create its call graph."
            )

        bound = bind_arguments(
            self.signature, self.fullname, args, kwargs, coerce=builder.active
        )
        with builder.scope(self.name):
            result = self.func(**bound)
        return WorkflowCall(self, self._check_outputs(result, nested=True))

    def get_input_params(self) -> List[inspect.Parameter]:
        return list(self.signature.parameters.values())


@overload
def workflow(func: Func) -> Workflow:
    ...


@overload
def workflow(
    *,
    name: Optional[str] = None,
    namespace: Optional[str] = None,
    outputs: Optional[Dict[str, Any]] = None,
) -> Callable[[Func], Workflow]:
    ...


def workflow(
    func: Optional[Func] = None,
    *,
    name: Optional[str] = None,
    namespace: Optional[str] = None,
    outputs: Optional[Dict[str, Any]] = None,
) -> Union[Workflow, Callable[[Func], Workflow]]:
    """
    Decorator to declare a seqflow :class:`Workflow`.

    `outputs` maps output names to types. Outputs typed `Optional[...]` may be
    absent from the output bundle when their producers are skipped.
    """

    def deco(func: Func) -> Workflow:
        return Workflow(func, name=name, namespace=namespace, outputs=outputs)

    if func:
        return deco(func)
    else:
        return deco

