from typing import List, Optional

import pytest

from seqflow import Experiment, File, GraphError, Script, ValidationError, script, task
from seqflow.task import coerce_arg, get_optional_type

seqflow_namespace = "test_task"


@task(image="ubuntu:22.04", memory=2, max_retries=1, outputs={"out": File, "name": str})
def tool(bam: File, label: str = "x") -> Script:
    """
    Example tool.
    """
    return script(
        f"cp {bam} {label}.bam; echo {label}",
        outputs={"out": File(f"{label}.bam"), "name": File("-")},
    )


def test_task_config() -> None:
    assert tool.name == "tool"
    assert tool.namespace == "test_task"
    assert tool.fullname == "test_task.tool"
    assert tool.outputs == {"out": File, "name": str}
    assert tool.__doc__.strip() == "Example tool."

    options = tool.get_task_options()
    assert options["image"] == "ubuntu:22.04"
    assert options["memory"] == 2
    assert options["cpu"] == 1
    assert options["max_retries"] == 1


def test_task_options_override() -> None:
    """
    options() returns a new task with overrides and leaves the original as is.
    """
    tool2 = tool.options(memory=8, cpu=2)
    assert tool2.get_task_option("memory") == 8
    assert tool2.get_task_option("cpu") == 2
    assert tool2.get_task_option("image") == "ubuntu:22.04"
    assert tool.get_task_option("memory") == 2
    assert tool2.has_task_option("cpu")
    assert not tool.has_task_option("cpu")


def test_task_options_invalid() -> None:
    with pytest.raises(ValueError):
        tool.options(memory=0)
    with pytest.raises(ValueError):
        tool.options(max_retries=-1)
    with pytest.raises(ValueError):
        tool.options(gpus=1)

    with pytest.raises(TypeError):

        @task(outputs={"count": int})
        def counter() -> Script:
            return script("echo 1", outputs={"count": File("-")})


def test_task_render() -> None:
    result = tool.render({"bam": File("/data/a.bam"), "label": "b"})
    assert result.command.endswith("cp /data/a.bam b.bam; echo b")
    assert result.outputs["out"] == File("b.bam")


def test_task_render_mismatched_outputs() -> None:
    @task(outputs={"out": File})
    def bad() -> Script:
        return script("touch other.txt", outputs={"other": File("other.txt")})

    with pytest.raises(ValueError):
        bad.render({})


def test_task_call_outside_workflow() -> None:
    with pytest.raises(GraphError):
        tool(bam=File("a.bam"))


def test_coerce_arg() -> None:
    assert coerce_arg(File, "a.bam", "bam") == File("a.bam")
    assert coerce_arg(int, "10", "n") == 10
    assert coerce_arg(float, 2, "x") == 2.0
    assert coerce_arg(bool, "true", "flag") is True
    assert coerce_arg(Experiment, "WES", "experiment") == Experiment.WES
    assert coerce_arg(Optional[File], None, "gtf") is None
    assert coerce_arg(List[File], ["a.bed", "b.bed"], "beds") == [File("a.bed"), File("b.bed")]

    with pytest.raises(ValidationError):
        coerce_arg(File, None, "bam")
    with pytest.raises(ValidationError):
        coerce_arg(int, "ten", "n")
    with pytest.raises(ValidationError):
        coerce_arg(str, 10, "name")
    with pytest.raises(ValidationError):
        coerce_arg(List[File], "a.bed", "beds")


def test_get_optional_type() -> None:
    assert get_optional_type(Optional[File]) is File
    assert get_optional_type(File) is None
