import enum
import inspect
import re
import sys
import typing
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Tuple,
    TypeVar,
    Union,
    cast,
    overload,
)

from seqflow.branching import ValidationError, parse_enum
from seqflow.expression import ABSENT, Expression
from seqflow.file import File
from seqflow.graph import GraphError, get_current_builder
from seqflow.scripting import Script
from seqflow.utils import str2bool

if typing.TYPE_CHECKING:
    from seqflow.graph import Call

Func = TypeVar("Func", bound=Callable)

NoneType = type(None)

# Options understood by the scheduler and executors.
TASK_OPTIONS = {"image", "memory", "disk", "cpu", "max_retries", "executor"}

DEFAULT_TASK_OPTIONS: Dict[str, Any] = {
    "memory": 4,
    "disk": 10,
    "cpu": 1,
    "max_retries": 0,
}

# Types a task output may be declared as.
OUTPUT_TYPES = (File, str)


def compute_namespace(func: Callable, namespace: Optional[str] = None) -> str:
    """
    Compute the namespace for a task or workflow function.

    Precedence:
    - Explicit namespace provided (note: an empty string is a valid explicit value)
    - Infer it from a `seqflow_namespace` variable in the same module as func
    """
    if namespace is None:
        namespace = getattr(sys.modules[func.__module__], "seqflow_namespace", None)
    return namespace or ""


def get_optional_type(anno: Any) -> Optional[Any]:
    """
    Returns T if `anno` is Optional[T], otherwise None.
    """
    if typing.get_origin(anno) is not Union:
        return None
    args = [arg for arg in typing.get_args(anno) if arg is not NoneType]
    if len(args) != 1 or len(typing.get_args(anno)) != 2:
        return None
    return args[0]


def coerce_arg(anno: Any, value: Any, name: str) -> Any:
    """
    Convert an argument into the type declared by its annotation.

    Strings (e.g. from the command line or an inputs file) are parsed into
    enums, Files, bools and numbers. Lazy expressions are left as is since
    their values are only known at run time.
    """
    if isinstance(value, Expression) or value is ABSENT:
        return value
    if anno is inspect.Parameter.empty or anno is Any:
        return value

    optional_type = get_optional_type(anno)
    if optional_type is not None:
        if value is None:
            return None
        return coerce_arg(optional_type, value, name)

    origin = typing.get_origin(anno)
    if origin in (list, List):
        if not isinstance(value, (list, tuple)):
            raise ValidationError(f"Input '{name}' expects a list: {value!r}")
        (item_type,) = typing.get_args(anno) or (Any,)
        return [coerce_arg(item_type, item, name) for item in value]

    if inspect.isclass(anno) and issubclass(anno, enum.Enum):
        return parse_enum(anno, value, name=name)

    if anno is File:
        if isinstance(value, (File, str)) and value:
            return File(value)
        raise ValidationError(f"Input '{name}' expects a file path: {value!r}")

    try:
        if anno is bool and isinstance(value, str):
            return str2bool(value)
        if anno in (int, float) and isinstance(value, str):
            return anno(value)
    except ValueError as error:
        raise ValidationError(f"Input '{name}': {error}")

    if anno is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)

    if inspect.isclass(anno) and not isinstance(value, anno):
        raise ValidationError(
            f"Input '{name}' expects {anno.__name__}: {value!r} ({type(value).__name__})"
        )
    return value


def bind_arguments(
    signature: inspect.Signature,
    fullname: str,
    args: Tuple,
    kwargs: dict,
    error_class: type = GraphError,
    coerce: bool = True,
) -> Dict[str, Any]:
    """
    Bind call arguments to a signature, applying defaults and type coercion.

    Calls in inactive branches are never run, so their arguments are bound
    without coercion (`coerce=False`).
    """
    try:
        bound = signature.bind(*args, **kwargs)
    except TypeError as error:
        raise error_class(f"Invalid arguments for {fullname}: {error}")
    bound.apply_defaults()

    if not coerce:
        return dict(bound.arguments)
    return {
        name: coerce_arg(signature.parameters[name].annotation, value, name)
        for name, value in bound.arguments.items()
    }


def is_optional_param(param: inspect.Parameter) -> bool:
    """
    Returns True if a parameter may be given None.
    """
    return param.default is None or get_optional_type(param.annotation) is not None


TASK_NAME_PATTERN = re.compile(r"[A-Za-z_][A-Za-z_0-9]*")
NAMESPACE_PATTERN = re.compile(r"[A-Za-z_][A-Za-z_0-9.]*")


def check_task_options(task_name: str, options: Dict[str, Any]) -> None:
    """
    Raises ValueError for unknown or out of range task options.
    """
    unknown = sorted(set(options) - TASK_OPTIONS)
    if unknown:
        raise ValueError(f"Unknown task options for {task_name}: {', '.join(unknown)}")

    for resource in ("memory", "disk", "cpu"):
        amount = options.get(resource, 1)
        if not isinstance(amount, (int, float)) or amount <= 0:
            raise ValueError(f"Task option {resource} must be a positive number")

    max_retries = options.get("max_retries", 0)
    if not isinstance(max_retries, int) or max_retries < 0:
        raise ValueError("Task option max_retries must be a non-negative int")


class Task(Generic[Func]):
    """
    A wrapper around one external command.

    Tasks are usually defined using the :func:`task` decorator. The wrapped
    function receives the task inputs and returns a :class:`Script`: the
    command line to run and the paths of the output files it produces.

    .. code-block:: python

        @task(image="quay.io/biocontainers/samtools:1.17", memory=2, outputs={"flagstat": File})
        def flagstat(bam: File) -> Script:
            out = bam.stem(".bam") + ".flagstat.txt"
            return script(f"samtools flagstat {bam} > {out}", outputs={"flagstat": File(out)})

    Calling a task within a workflow does not run the command. It adds a call
    to the workflow graph and returns the :class:`seqflow.graph.Call`, whose
    outputs can be passed to other tasks.

    Outputs declared as `str` are read back from the named file (or from
    standard output with `File("-")`) as a single line of text.
    """

    def __init__(
        self,
        func: Callable,
        name: Optional[str] = None,
        namespace: Optional[str] = None,
        outputs: Optional[Dict[str, type]] = None,
        declared_options: Optional[dict] = None,
        option_overrides: Optional[dict] = None,
    ):
        self.func = func
        self.name = name or func.__name__
        self.namespace = compute_namespace(func, namespace)
        self.outputs: Dict[str, type] = dict(outputs or {})
        self.__doc__ = func.__doc__
        self.signature = inspect.signature(func)

        # Options given to the decorator, and those given later to `options()`.
        self._declared_options: Dict[str, Any] = dict(declared_options or {})
        self._option_overrides: Dict[str, Any] = dict(option_overrides or {})

        self._check_names()
        self._check_outputs()
        check_task_options(self.name, self._declared_options)
        check_task_options(self.name, self._option_overrides)

    T = TypeVar("T")

    @overload
    def get_task_option(self, option_name: str) -> Optional[Any]:
        ...

    @overload
    def get_task_option(self, option_name: str, default: T) -> T:
        ...

    def get_task_option(self, option_name: str, default: Optional[T] = None) -> Optional[T]:
        """
        Returns an option, falling back to `DEFAULT_TASK_OPTIONS` and then
        `default`.
        """
        return self.get_task_options().get(option_name, default)

    def get_task_options(self) -> dict:
        return {**DEFAULT_TASK_OPTIONS, **self._declared_options, **self._option_overrides}

    def has_task_option(self, option_name: str) -> bool:
        """
        Returns True if the option was set explicitly, rather than defaulted.
        """
        return option_name in self._declared_options or option_name in self._option_overrides

    def __repr__(self) -> str:
        return f"Task(fullname={self.fullname})"

    def _check_names(self) -> None:
        if self.namespace and not NAMESPACE_PATTERN.fullmatch(self.namespace):
            raise ValueError(
                "Task namespace may only contain letters, digits, '_' and '.', and may not "
                f"start with a digit or '.': {self.namespace}"
            )
        if not TASK_NAME_PATTERN.fullmatch(self.name):
            raise ValueError(
                f"Task name may only contain letters, digits and '_': {self.name}"
            )

    def _check_outputs(self) -> None:
        for output_name, output_type in self.outputs.items():
            if output_type not in OUTPUT_TYPES:
                raise TypeError(
                    f"Output '{output_name}' of task {self.name} must be File or str: "
                    f"{output_type!r}"
                )

    @property
    def fullname(self) -> str:
        """
        Returns `namespace.name`, or just the name without a namespace.
        """
        return f"{self.namespace}.{self.name}" if self.namespace else self.name

    def _call(self, *args: Any, **kwargs: Any) -> "Call":
        """
        Adds a call of this task to the workflow graph being built.
        """
        builder = get_current_builder(required=False)
        if not builder:
            raise GraphError(
                f"Task {self.fullname} can only be called while a workflow is being built."
            )
        return builder.add_call(self, args, kwargs)

    # Calls appear to return the wrapped function's result type to callers.
    __call__: Func = cast(Func, _call)

    def options(self, **overrides: Any) -> "Task[Func]":
        """
        Returns a copy of the task with some options replaced, e.g.
        `bwa_mem.options(cpu=16)`.
        """
        return self.__class__(
            self.func,
            name=self.name,
            namespace=self.namespace,
            outputs=self.outputs,
            declared_options=self._declared_options,
            option_overrides={**self._option_overrides, **overrides},
        )

    def bind(self, args: Tuple, kwargs: dict, coerce: bool = True) -> Dict[str, Any]:
        """
        Bind call arguments to the task's parameters.
        """
        return bind_arguments(self.signature, self.fullname, args, kwargs, coerce=coerce)

    def is_optional_arg(self, arg_name: str) -> bool:
        return is_optional_param(self.signature.parameters[arg_name])

    def render(self, args: Dict[str, Any]) -> Script:
        """
        Render the command of the task for fully resolved arguments.
        """
        result = self.func(**args)
        if isinstance(result, str):
            result = Script(result)
        if not isinstance(result, Script):
            raise TypeError(
                f"Task {self.fullname} must return a command string or Script: {result!r}"
            )

        missing = sorted(set(self.outputs) - set(result.outputs))
        extra = sorted(set(result.outputs) - set(self.outputs))
        if missing or extra:
            raise ValueError(
                f"Task {self.fullname} outputs do not match its declaration "
                f"(missing: {missing}, undeclared: {extra})"
            )
        return result


@overload
def task(
    func: Func,
) -> Task[Func]:
    ...


@overload
def task(
    *,
    name: Optional[str] = None,
    namespace: Optional[str] = None,
    outputs: Optional[Dict[str, type]] = None,
    **options: Any,
) -> Callable[[Func], Task[Func]]:
    ...


def task(
    func: Optional[Func] = None,
    *,
    name: Optional[str] = None,
    namespace: Optional[str] = None,
    outputs: Optional[Dict[str, type]] = None,
    **options: Any,
) -> Union[Task[Func], Callable[[Func], Task[Func]]]:
    """
    Decorator to declare a seqflow :class:`Task`.

    Parameters
    ----------
    func : Optional[Func]
        The function returning the command of the task.
    name : Optional[str]
        Name of the task. Defaults to the function name.
    namespace : Optional[str]
        Namespace of the task. Defaults to the module variable `seqflow_namespace`.
    outputs : Optional[Dict[str, type]]
        Declared outputs, mapping output names to `File` or `str`.
    **options : Any
        Runtime options of the task:

        - image: container image reference.
        - memory: memory in GB.
        - disk: disk in GB.
        - cpu: number of cores.
        - max_retries: number of times a failed attempt is retried.
        - executor: name of the executor to run on.
    """

    def deco(func: Func) -> Task[Func]:
        return Task(
            func,
            name=name,
            namespace=namespace,
            outputs=outputs,
            declared_options=options,
        )

    if func:
        return deco(func)
    else:
        return deco
