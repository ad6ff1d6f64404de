import importlib
import typing
from typing import Any, Callable, Dict, Iterator, Optional, Type, Union, cast

if typing.TYPE_CHECKING:
    from seqflow.scheduler import Job, Scheduler


class ExecutorError(Exception):
    pass


class Executor:
    """
    Base class for running jobs.

    Most Executors should register themselves with :func:`register_executor`.
    """

    def __init__(
        self,
        name: str,
        scheduler: Optional["Scheduler"] = None,
        config=None,
    ):
        self.name = name
        self._scheduler = scheduler

    def set_scheduler(self, scheduler: "Scheduler") -> None:
        self._scheduler = scheduler

    def log(self, *messages: Any, **kwargs) -> None:
        """
        Display log message through Scheduler.
        """
        assert self._scheduler
        self._scheduler.log(f"Executor[{self.name}]:", *messages, **kwargs)

    def submit(self, job: "Job") -> None:
        """
        Run the command of the provided job.

        Implementations must provide results back to the scheduler by either
        calling `done_job` or `reject_job`.
        """
        assert self._scheduler
        self._scheduler.reject_job(
            job,
            ExecutorError("Executor {} does not support submitting jobs.".format(type(self))),
        )

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass


# Executor type name -> Executor class, or its dotted path until first used.
_executor_registry: Dict[str, Union[Type[Executor], str]] = {}


def get_executor_class(executor_name: str, required: bool = True) -> Optional[Type[Executor]]:
    """
    Get an Executor class by type name, importing it on first use.

    Parameters
    ----------
    executor_name : str
        Executor type name, as in the `type` option of an executor config.
    required : bool
        If True, raises ExecutorError for unknown names. Otherwise returns None.
    """
    executor_class = _executor_registry.get(executor_name)
    if executor_class is None:
        if required:
            raise ExecutorError(
                "Unknown executor type {}. Known types: {}".format(
                    executor_name, ", ".join(sorted(_executor_registry))
                )
            )
        return None

    if isinstance(executor_class, str):
        module_name, class_name = executor_class.rsplit(".", 1)
        module = importlib.import_module(module_name)
        executor_class = cast(Type[Executor], getattr(module, class_name))
        _executor_registry[executor_name] = executor_class
    return executor_class


def register_executor(executor_name: str, executor_class_name: Optional[str] = None) -> Callable:
    """
    Register an Executor type, either by decorating its class or by its dotted
    path, which defers importing the executor's module until it is configured.

    .. code-block:: python

        @register_executor("my_executor")
        class MyExecutor(Executor):
            ...

        register_executor("my_executor", "my_module.MyExecutor")
    """
    if executor_class_name:
        _executor_registry.setdefault(executor_name, executor_class_name)
        return lambda executor_class: executor_class

    def deco(executor_class: Type[Executor]) -> Type[Executor]:
        _executor_registry[executor_name] = executor_class
        return executor_class

    return deco


def get_executors_from_config(executors_config: dict) -> Iterator[Executor]:
    """
    Instantiate the executors of the `[executors.<name>]` config sections.
    """
    for executor_name, executor_config in executors_config.items():
        if "type" not in executor_config:
            raise ExecutorError(f"Executor {executor_name} has no type in its config.")
        executor_class = cast(Type[Executor], get_executor_class(executor_config["type"]))
        yield executor_class(executor_name, config=executor_config)
