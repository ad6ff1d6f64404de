from datetime import datetime, timedelta

import pytest

from seqflow import File
from seqflow.backends.db import SeqflowBackendDb, SeqflowDatabaseError


@pytest.fixture
def db() -> SeqflowBackendDb:
    backend = SeqflowBackendDb(db_uri="sqlite:///:memory:")
    backend.load()
    return backend


def test_record_execution(db: SeqflowBackendDb) -> None:
    start = datetime(2024, 1, 1, 12, 0, 0)
    db.record_execution(
        "abc123",
        "pipelines.quality_check",
        ["seqflow", "run", "workflow.py", "quality_check"],
        {"bam": File("/data/a.bam"), "experiment": "WGS"},
        now=start,
    )

    [execution] = db.get_executions()
    assert execution.status == "RUNNING"
    assert execution.duration is None
    # Values are stored as JSON, with Files as their paths.
    assert execution.inputs == {"bam": "/data/a.bam", "experiment": "WGS"}
    assert execution.args[1:] == ["run", "workflow.py", "quality_check"]

    db.record_execution_end("abc123", "DONE", now=start + timedelta(seconds=90))
    assert execution.status == "DONE"
    assert execution.duration == timedelta(seconds=90)

    with pytest.raises(SeqflowDatabaseError):
        db.record_execution_end("unknown", "DONE")


def test_get_executions(db: SeqflowBackendDb) -> None:
    """
    Executions are listed newest first and may be filtered by start time.
    """
    for i, exec_id in enumerate(["aaa111", "aaa222", "bbb333"]):
        db.record_execution(exec_id, "wf", ["seqflow"], {}, now=datetime(2024, 1, 1 + i))

    assert [execution.id for execution in db.get_executions()] == ["bbb333", "aaa222", "aaa111"]
    assert [execution.id for execution in db.get_executions(since=datetime(2024, 1, 2))] == [
        "bbb333",
        "aaa222",
    ]

    assert db.find_execution("bbb").id == "bbb333"
    assert db.find_execution("ccc") is None
    with pytest.raises(SeqflowDatabaseError):
        db.find_execution("aaa")


def test_backend_not_loaded() -> None:
    with pytest.raises(SeqflowDatabaseError):
        SeqflowBackendDb(db_uri="sqlite:///:memory:").get_executions()
