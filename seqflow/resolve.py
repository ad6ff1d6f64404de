"""
Values that are either provided by the caller or inferred by a task.

Several sample properties (library strandedness, quality encoding) may be given
explicitly or left empty. When left empty they are derived by running an
inference task and reading back its single-line result. The same rules apply to
every such property, so they are expressed once here and parametrized by a
:class:`ChoiceSet`.

.. code-block:: python

    infer = ngsderive_strandedness(bam=bam, gtf=gtf)
    resolution = provided_or_inferred(strandedness, STRANDEDNESS, infer.strandedness)
    qualimap_rnaseq(bam=bam, gtf=gtf, strandedness=resolution.expression)
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Tuple, Union

from seqflow.branching import ValidationError
from seqflow.expression import ChoiceExpression, Expression, OutputRef, ValueExpression


class InferenceError(Exception):
    """
    An inference task produced a value outside of its allowed choices.
    """

    pass


class ChoiceSet:
    """
    An enumerated set of allowed non-empty values for a sample property.

    The empty string is always accepted as a provided value and means the
    value should be inferred.
    """

    def __init__(self, name: str, choices: Iterable[str]):
        self.name = name
        self.choices: Tuple[str, ...] = tuple(choices)
        if "" in self.choices:
            raise ValueError("The empty string is reserved for inferred values.")

    def __repr__(self) -> str:
        return f"ChoiceSet({self.name!r}, {list(self.choices)!r})"

    def __contains__(self, value: Any) -> bool:
        return value in self.choices

    def _format_allowed(self) -> str:
        return ", ".join(repr(choice) for choice in ("",) + self.choices)

    def validate(self, value: Optional[str]) -> str:
        """
        Validate a caller-provided value. Returns the value with `None` mapped to `""`.
        """
        if value is None:
            value = ""
        if value != "" and value not in self.choices:
            raise ValidationError(
                f"Invalid {self.name} {value!r}. Expected one of: {self._format_allowed()}"
            )
        return value

    def parse(self, text: Union[str, bytes]) -> str:
        """
        Parse the single-line result of an inference task.
        """
        if isinstance(text, bytes):
            text = text.decode("utf8")
        lines = str(text).strip().splitlines()
        value = lines[0].strip() if lines else ""
        if value not in self.choices:
            raise InferenceError(
                f"Inferred {self.name} {value!r} is not one of: "
                + ", ".join(repr(choice) for choice in self.choices)
            )
        return value


STRANDEDNESS = ChoiceSet("strandedness", ["Stranded-Reverse", "Stranded-Forward", "Unstranded"])

QUALITY_ENCODING = ChoiceSet("phred_encoding", ["sanger", "illumina1.3"])


@dataclass(frozen=True)
class Provided:
    """
    A value given explicitly by the caller.
    """

    value: str

    @property
    def expression(self) -> Expression:
        return ValueExpression(self.value)


@dataclass(frozen=True)
class Inferred:
    """
    A value read back from the output of an inference task.
    """

    ref: OutputRef
    choice_set: ChoiceSet

    @property
    def expression(self) -> Expression:
        return ChoiceExpression(self.ref, self.choice_set)


Resolution = Union[Provided, Inferred]


def provided_or_inferred(
    provided: Optional[str],
    choice_set: ChoiceSet,
    inferred: Union[OutputRef, Callable[[], OutputRef]],
) -> Resolution:
    """
    Resolve a sample property from a caller-provided value or an inference task.

    Parameters
    ----------
    provided : Optional[str]
        The value given by the caller. Empty or None means infer it.
    choice_set : ChoiceSet
        Allowed values. A non-empty provided value outside the set raises
        :class:`ValidationError`.
    inferred : OutputRef or Callable[[], OutputRef]
        The single-line text output of an inference call. When a callable is
        given, it is only called (and so the inference task only added to the
        graph) if no value was provided.
    """
    value = choice_set.validate(provided)
    if value:
        return Provided(value)

    ref = inferred if isinstance(inferred, OutputRef) else inferred()
    if not isinstance(ref, OutputRef):
        raise TypeError(f"Expected an OutputRef for inferred {choice_set.name}: {ref!r}")
    return Inferred(ref, choice_set)
