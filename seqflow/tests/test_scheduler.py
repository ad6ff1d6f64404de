import os
from typing import Optional

import pytest

from seqflow import (
    STRANDEDNESS,
    File,
    InferenceError,
    Scheduler,
    Script,
    ScriptError,
    TaskFailedError,
    branch_if,
    provided_or_inferred,
    script,
    task,
    workflow,
)
from seqflow.backends.db import SeqflowBackendDb
from seqflow.config import Config
from seqflow.scheduler import DryRunResult, MissingOutputError, SchedulerError


@task(outputs={"out": File})
def write_text(text: str) -> Script:
    return script(f"echo {text} > text.txt", outputs={"out": File("text.txt")})


@task(outputs={"word": str})
def first_word(file: File) -> Script:
    return script(f"head -n 1 {file} | cut -d ' ' -f 1", outputs={"word": File("-")})


@task(max_retries=2, outputs={"out": File})
def flaky(counter: str) -> Script:
    """
    Fails on its first attempt only.
    """
    return script(
        f"""
        echo attempt >> {counter}
        if [ "$(wc -l < {counter})" -lt 2 ]; then
            exit 1
        fi
        echo ok > ok.txt
        """,
        outputs={"out": File("ok.txt")},
    )


@task(max_retries=1, outputs={"out": File})
def fail(message: str) -> Script:
    return script(f"echo {message} >&2; exit 3", outputs={"out": File("never.txt")})


@task(outputs={"out": File})
def forget_output() -> Script:
    return script("touch other.txt", outputs={"out": File("missing.txt")})


@task(cpu=2, outputs={"out": File})
def heavy(text: str) -> Script:
    return script(f"echo {text} > heavy.txt", outputs={"out": File("heavy.txt")})


@workflow(outputs={"text": File, "word": str, "shout": Optional[File]})
def words(text: str, shout: bool = False) -> dict:
    written = write_text(text=text)
    outputs = {"text": written.out, "word": first_word(file=written.out).word}
    with branch_if("shout", shout):
        outputs["shout"] = write_text(text=text.upper()).out
    return outputs


@task(outputs={"out": File})
def slow_text(text: str) -> Script:
    return script(f"sleep 1; echo {text} > slow.txt", outputs={"out": File("slow.txt")})


@task(outputs={"strandedness": str})
def guess_strandedness(answer: str) -> Script:
    return script(f"echo {answer}", outputs={"strandedness": File("-")})


@workflow(outputs={"out": File})
def retry_workflow(counter: str) -> dict:
    return {"out": flaky(counter=counter).out}


@workflow(outputs={"word": str})
def fail_workflow() -> dict:
    failed = fail(message="boom")
    return {"word": first_word(file=failed.out).word}


@workflow(outputs={"word": str, "failed": File})
def slow_and_failing_workflow() -> dict:
    return {
        "word": first_word(file=slow_text(text="slow").out).word,
        "failed": fail(message="boom").out,
    }


@workflow(outputs={"strandedness": str})
def strandedness_workflow(answer: str) -> dict:
    inferred = guess_strandedness(answer=answer).strandedness
    return {"strandedness": provided_or_inferred("", STRANDEDNESS, inferred).expression}


@workflow(outputs={"out": File})
def forget_workflow() -> dict:
    return {"out": forget_output().out}


@workflow(outputs={"a": File, "b": File})
def heavy_workflow() -> dict:
    return {"a": heavy(text="a").out, "b": heavy(text="b").out}


@workflow(outputs={"text": Optional[File]})
def nothing_workflow() -> dict:
    with branch_if("never", False):
        written = write_text(text="hi")
    return {"text": written.out}


def test_run(scheduler: Scheduler, backend: SeqflowBackendDb) -> None:
    """
    Jobs run in dependency order and their outputs form the bundle.
    """
    graph = words.build(text="hello world")
    bundle = scheduler.run(graph, execution_id="exec1")

    assert bundle["word"] == "hello"
    assert bundle["text"].read() == "hello world\n"
    assert bundle["text"].path.startswith(os.path.join(scheduler.scratch, "exec1", "write_text"))
    assert "shout" not in bundle
    assert bundle.absent == ("shout",)

    [execution] = backend.get_executions()
    assert execution.id == "exec1"
    assert execution.workflow == "words"
    assert execution.status == "DONE"
    assert execution.inputs == {"text": "hello world", "shout": False}
    assert sorted((job.call_name, job.status) for job in execution.jobs) == [
        ("first_word", "DONE"),
        ("write_text", "DONE"),
        ("write_text_2", "SKIPPED"),
    ]


def test_run_branch_active(scheduler: Scheduler) -> None:
    bundle = scheduler.run(words.build(text="hello", shout=True))
    assert bundle["shout"].read() == "HELLO\n"


def test_retry(scheduler: Scheduler, backend: SeqflowBackendDb, tmp_path) -> None:
    """
    A failed attempt is retried immediately, in a new directory.
    """
    counter = str(tmp_path / "counter.txt")
    bundle = scheduler.run(retry_workflow.build(counter=counter), execution_id="exec1")

    assert bundle["out"].read() == "ok\n"
    with open(counter) as infile:
        assert len(infile.readlines()) == 2

    [job] = backend.get_executions()[0].jobs
    assert job.status == "DONE"
    assert job.attempts == 2
    job_dir = os.path.join(scheduler.scratch, "exec1", "flaky")
    assert sorted(os.listdir(job_dir)) == ["attempt-1", "attempt-2"]
    assert os.path.exists(os.path.join(job_dir, "attempt-1", ".command.sh"))


def test_failure(scheduler: Scheduler, backend: SeqflowBackendDb) -> None:
    """
    The final failure of a job stops the execution.
    """
    with pytest.raises(TaskFailedError) as excinfo:
        scheduler.run(fail_workflow.build())

    error = excinfo.value
    assert error.call_name == "fail"
    assert error.attempts == 2
    assert isinstance(error.error, ScriptError)
    assert error.error.returncode == 3
    assert str(error).startswith("Call fail failed after 2 attempts: ScriptError: Exit code 3.")

    [execution] = backend.get_executions()
    assert execution.status == "FAILED"
    # The downstream job never started.
    [job] = execution.jobs
    assert job.call_name == "fail"
    assert job.status == "FAILED"
    assert job.attempts == 2
    assert "ScriptError" in job.error


def test_run_after_failure(scheduler: Scheduler) -> None:
    """
    Work left over from a failed execution does not leak into the next one.
    """
    with pytest.raises(TaskFailedError) as excinfo:
        scheduler.run(slow_and_failing_workflow.build())
    assert excinfo.value.call_name == "fail"

    bundle = scheduler.run(words.build(text="hello world"))
    assert bundle["word"] == "hello"
    assert scheduler.events_queue.empty()


def test_inferred_value_checked(scheduler: Scheduler, backend: SeqflowBackendDb) -> None:
    """
    An inferred value outside of its choices fails the inference job.
    """
    bundle = scheduler.run(strandedness_workflow.build(answer="Unstranded"))
    assert bundle["strandedness"] == "Unstranded"

    with pytest.raises(TaskFailedError) as excinfo:
        scheduler.run(strandedness_workflow.build(answer="Inconclusive"), execution_id="exec2")
    error = excinfo.value
    assert error.call_name == "guess_strandedness"
    assert isinstance(error.error, InferenceError)

    [job] = [
        execution for execution in backend.get_executions() if execution.id == "exec2"
    ][0].jobs
    assert job.status == "FAILED"
    assert "InferenceError" in job.error


def test_missing_output(scheduler: Scheduler) -> None:
    with pytest.raises(TaskFailedError) as excinfo:
        scheduler.run(forget_workflow.build())

    assert isinstance(excinfo.value.error, MissingOutputError)
    assert excinfo.value.attempts == 1


def test_dryrun(scheduler: Scheduler, backend: SeqflowBackendDb) -> None:
    """
    A dry run lists the jobs without running them.
    """
    with pytest.raises(DryRunResult):
        scheduler.run(words.build(text="hello"), dryrun=True, execution_id="exec1")

    assert not os.path.exists(os.path.join(scheduler.scratch, "exec1"))
    [execution] = backend.get_executions()
    assert execution.status == "DRYRUN"


def test_dryrun_nothing_to_run(scheduler: Scheduler) -> None:
    bundle = scheduler.run(nothing_workflow.build(), dryrun=True)
    assert dict(bundle) == {}
    assert bundle.absent == ("text",)


def test_unknown_executor(scheduler: Scheduler, backend: SeqflowBackendDb) -> None:
    with pytest.raises(SchedulerError):
        scheduler.run(words.build(text="hello"), executor="batch")

    # Nothing was recorded.
    assert backend.get_executions() == []


def test_limits(tmp_path) -> None:
    """
    Jobs run within the resource limits.
    """
    scheduler = Scheduler(config=Config({"limits": {"cpu": "2"}}), scratch=str(tmp_path))
    assert scheduler.limits == {"cpu": 2.0}

    bundle = scheduler.run(heavy_workflow.build())
    assert bundle["a"].read() == "a\n"
    assert bundle["b"].read() == "b\n"
    assert scheduler.limits_used["cpu"] == 0

    # A job that can never fit is rejected before anything runs.
    scheduler = Scheduler(config=Config({"limits": {"cpu": "1"}}), scratch=str(tmp_path))
    with pytest.raises(SchedulerError):
        scheduler.run(heavy_workflow.build())
