import typing
from typing import Any, Callable, Iterator, List, Optional

from seqflow.utils import iter_nested_value, map_nested_value

if typing.TYPE_CHECKING:
    from seqflow.graph import Call

# Looks up the value of a call output: (call, output_name) -> value.
ResultLookup = Callable[["Call", str], Any]


class Absent:
    """
    Marker for a value whose producer did not run.
    """

    _instance: Optional["Absent"] = None

    def __new__(cls) -> "Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = Absent()


class Expression:
    """
    Base class for lazy values passed between calls.

    Expressions are created while a workflow graph is built and are resolved by
    the scheduler once the calls they depend on have finished.
    """

    def upstream_calls(self) -> Iterator["Call"]:
        return iter(())

    def is_absent(self) -> bool:
        """
        Returns True if the value can never be produced in this graph.
        """
        return False

    def resolve(self, lookup: ResultLookup) -> Any:
        raise NotImplementedError()


class ValueExpression(Expression):
    """
    A concrete value wrapped as an expression.
    """

    def __init__(self, value: Any):
        self.value = value

    def __repr__(self) -> str:
        return f"ValueExpression({self.value!r})"

    def resolve(self, lookup: ResultLookup) -> Any:
        return self.value


class OutputRef(Expression):
    """
    Reference to a named output of a call.
    """

    def __init__(self, call: "Call", output_name: str):
        self.call = call
        self.output_name = output_name

    def __repr__(self) -> str:
        return f"{self.call.name}.{self.output_name}"

    def __eq__(self, other: Any) -> bool:
        return (
            isinstance(other, OutputRef)
            and self.call is other.call
            and self.output_name == other.output_name
        )

    def __hash__(self) -> int:
        return hash((id(self.call), self.output_name))

    def __bool__(self) -> bool:
        raise TypeError(
            f"Output {self!r} is not known until the workflow runs and cannot be used "
            "as a condition."
        )

    def upstream_calls(self) -> Iterator["Call"]:
        yield self.call

    def is_absent(self) -> bool:
        return self.call.skipped

    def resolve(self, lookup: ResultLookup) -> Any:
        return lookup(self.call, self.output_name)


class ChoiceExpression(Expression):
    """
    A single-line text output parsed and checked against a set of choices.
    """

    def __init__(self, ref: OutputRef, choice_set: Any):
        self.ref = ref
        self.choice_set = choice_set

    def __repr__(self) -> str:
        return f"{self.choice_set.name}({self.ref!r})"

    def upstream_calls(self) -> Iterator["Call"]:
        return self.ref.upstream_calls()

    def is_absent(self) -> bool:
        return self.ref.is_absent()

    def resolve(self, lookup: ResultLookup) -> Any:
        text = self.ref.resolve(lookup)
        if text is ABSENT:
            return ABSENT
        return self.choice_set.parse(text)


class SelectAll(Expression):
    """
    A list keeping only the items whose producers ran.
    """

    def __init__(self, items: List[Any]):
        self.items = list(items)

    def __repr__(self) -> str:
        return "select_all([{}])".format(", ".join(map(repr, self.items)))

    def upstream_calls(self) -> Iterator["Call"]:
        for item in self.items:
            yield from iter_upstream_calls(item)

    def resolve(self, lookup: ResultLookup) -> Any:
        values = [resolve_value(item, lookup) for item in self.items]
        return [value for value in values if value is not ABSENT and value is not None]


def select_all(items: List[Any]) -> SelectAll:
    """
    Returns a lazy list of the items whose producers were not skipped.
    """
    return SelectAll(items)


def iter_expressions(value: Any) -> Iterator[Expression]:
    """
    Iterate through the expressions nested within a value.
    """
    for leaf in iter_nested_value(value):
        if isinstance(leaf, Expression):
            yield leaf


def iter_choice_expressions(value: Any) -> Iterator[ChoiceExpression]:
    """
    Iterate through the choice expressions nested within a value, including
    those within `select_all` lists.
    """
    for expr in iter_expressions(value):
        if isinstance(expr, ChoiceExpression):
            yield expr
        elif isinstance(expr, SelectAll):
            yield from iter_choice_expressions(expr.items)


def iter_upstream_calls(value: Any) -> Iterator["Call"]:
    """
    Iterate through the calls a nested value depends upon.
    """
    for expr in iter_expressions(value):
        yield from expr.upstream_calls()


def is_absent_value(value: Any) -> bool:
    """
    Returns True if any expression nested in `value` can never be produced.
    """
    if value is ABSENT:
        return True
    return any(expr.is_absent() for expr in iter_expressions(value))


def resolve_value(value: Any, lookup: ResultLookup) -> Any:
    """
    Replace all expressions nested within a value with their results.
    """

    def resolve_term(term: Any) -> Any:
        if isinstance(term, Expression):
            return term.resolve(lookup)
        return term

    return map_nested_value(resolve_term, value)
