import pytest

from seqflow import (
    QUALITY_ENCODING,
    STRANDEDNESS,
    ChoiceSet,
    File,
    InferenceError,
    Script,
    ValidationError,
    build_graph,
    provided_or_inferred,
    script,
    task,
)
from seqflow.expression import ChoiceExpression, ValueExpression
from seqflow.resolve import Inferred, Provided


@task(outputs={"strandedness": str})
def guess_strandedness(bam: File) -> Script:
    return script("echo Unstranded", outputs={"strandedness": File("-")})


def test_choice_set_validate() -> None:
    assert STRANDEDNESS.validate("Stranded-Reverse") == "Stranded-Reverse"
    assert STRANDEDNESS.validate("") == ""
    assert STRANDEDNESS.validate(None) == ""
    assert QUALITY_ENCODING.validate("illumina1.3") == "illumina1.3"

    with pytest.raises(ValidationError) as excinfo:
        STRANDEDNESS.validate("Reverse")
    assert "'Stranded-Forward'" in str(excinfo.value)

    # The empty string is reserved.
    with pytest.raises(ValueError):
        ChoiceSet("example", ["", "a"])


def test_choice_set_parse() -> None:
    assert STRANDEDNESS.parse("Unstranded\n") == "Unstranded"
    assert STRANDEDNESS.parse(b"Stranded-Forward\nextra\n") == "Stranded-Forward"

    with pytest.raises(InferenceError):
        STRANDEDNESS.parse("Inconclusive")
    with pytest.raises(InferenceError):
        STRANDEDNESS.parse("")


def test_provided_value() -> None:
    """
    A provided value is used verbatim and no inference is needed.
    """
    resolution = provided_or_inferred("Unstranded", STRANDEDNESS, lambda: pytest.fail())
    assert resolution == Provided("Unstranded")
    assert isinstance(resolution.expression, ValueExpression)
    assert resolution.expression.value == "Unstranded"


def test_inferred_value() -> None:
    """
    An empty value is read back from the inference call.
    """
    with build_graph() as builder:
        call = guess_strandedness(bam=File("/data/sample.bam"))
        resolution = provided_or_inferred("", STRANDEDNESS, call.strandedness)

    assert isinstance(resolution, Inferred)
    assert isinstance(resolution.expression, ChoiceExpression)
    assert list(resolution.expression.upstream_calls()) == [call]
    assert len(builder.graph) == 1

    lookup = {(call, "strandedness"): "Stranded-Reverse\n"}
    assert resolution.expression.resolve(lambda c, name: lookup[(c, name)]) == "Stranded-Reverse"


def test_inferred_callable() -> None:
    """
    The inference call is only added when the value is not provided.
    """
    with build_graph() as builder:
        provided_or_inferred(
            "Unstranded", STRANDEDNESS, lambda: guess_strandedness(bam=File("a.bam")).strandedness
        )
    assert len(builder.graph) == 0

    with build_graph() as builder:
        provided_or_inferred(
            None, STRANDEDNESS, lambda: guess_strandedness(bam=File("a.bam")).strandedness
        )
    assert len(builder.graph) == 1


def test_invalid_provided_value() -> None:
    with pytest.raises(ValidationError):
        provided_or_inferred("phred33", QUALITY_ENCODING, lambda: pytest.fail())
