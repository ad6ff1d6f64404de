import os
from typing import Optional

import pytest

from seqflow import (
    Experiment,
    File,
    GraphError,
    OutputBundle,
    Script,
    ValidationError,
    branch,
    branch_if,
    script,
    select_branches,
    task,
    workflow,
)

seqflow_namespace = "test_workflow"


@task(outputs={"flagstat": File})
def flagstat(bam: File) -> Script:
    return script(f"wc -c {bam} > flagstat.txt", outputs={"flagstat": File("flagstat.txt")})


@task(outputs={"md5": File})
def checksum(file: File) -> Script:
    return script(f"md5sum {file} > md5.txt", outputs={"md5": File("md5.txt")})


@workflow(outputs={"flagstat": File, "md5": Optional[File]})
def bam_stats(bam: File, compute_checksum: bool = False) -> dict:
    outputs = {"flagstat": flagstat(bam=bam).flagstat}
    with branch_if("checksum", compute_checksum):
        outputs["md5"] = checksum(file=bam).md5
    return outputs


@workflow(outputs={"flagstat": File, "rna_md5": Optional[File], "stats_md5": Optional[File]})
def sample_stats(bam: File, experiment: Experiment) -> dict:
    branches = select_branches(experiment, gtf=File("genes.gtf"))
    stats = bam_stats(bam=bam, compute_checksum=True)
    outputs = {"flagstat": stats.flagstat, "stats_md5": stats.md5}
    with branch(branches, "rna_seq"):
        outputs["rna_md5"] = checksum(file=bam).md5
    return outputs


@workflow(outputs={"flagstat": File})
def required_from_branch(bam: File) -> dict:
    with branch_if("never", False):
        stats = flagstat(bam=bam)
    return {"flagstat": stats.flagstat}


def test_workflow_build() -> None:
    graph = bam_stats.build(bam="/data/sample.bam")

    assert bam_stats.fullname == "test_workflow.bam_stats"
    assert graph.name == "test_workflow.bam_stats"
    assert [call.name for call in graph.active_calls()] == ["flagstat"]
    assert [call.name for call in graph.skipped_calls()] == ["checksum"]
    assert graph.inputs == {"bam": File("/data/sample.bam"), "compute_checksum": False}
    assert graph.optional_outputs == {"md5"}
    assert graph["flagstat"].args == {"bam": File("/data/sample.bam")}


def test_workflow_relative_inputs() -> None:
    """
    Input files are made absolute before any job runs.
    """
    graph = bam_stats.build(bam="sample.bam")
    assert graph.inputs["bam"] == File(os.path.join(os.getcwd(), "sample.bam"))


def test_workflow_invalid_inputs() -> None:
    with pytest.raises(ValidationError):
        bam_stats.build()
    with pytest.raises(ValidationError):
        bam_stats.build(bam="a.bam", compute_checksum="maybe")
    with pytest.raises(ValidationError):
        bam_stats.build(bam="a.bam", unknown=1)


def test_sub_workflow() -> None:
    """
    Sub-workflows are inlined with prefixed call names.
    """
    graph = sample_stats.build(bam="/data/a.bam", experiment="WGS")

    assert [call.name for call in graph] == [
        "bam_stats.flagstat",
        "bam_stats.checksum",
        "checksum",
    ]
    assert [call.name for call in graph.skipped_calls()] == ["checksum"]
    assert graph.branch_set is not None
    assert list(graph.branch_set) == ["wgs_wes"]


def test_required_output_from_skipped_call() -> None:
    with pytest.raises(GraphError):
        required_from_branch.build(bam="a.bam")


def test_undeclared_output() -> None:
    @workflow(outputs={"flagstat": File})
    def extra(bam: File) -> dict:
        stats = flagstat(bam=bam)
        return {"flagstat": stats.flagstat, "other": stats.flagstat}

    with pytest.raises(GraphError):
        extra.build(bam="a.bam")


def test_workflow_call_outside_workflow() -> None:
    with pytest.raises(GraphError):
        bam_stats(bam="a.bam")


def test_output_bundle() -> None:
    """
    Outputs of skipped calls are absent from the bundle.
    """
    graph = sample_stats.build(bam="/data/a.bam", experiment="WGS")

    def lookup(call, output_name):
        return File(f"/work/{call.name}/{output_name}.txt")

    bundle = OutputBundle.from_graph(graph, lookup)
    assert sorted(bundle) == ["flagstat", "stats_md5"]
    assert bundle.absent == ("rna_md5",)
    assert "rna_md5" not in bundle
    assert bundle.to_dict() == {
        "flagstat": "/work/bam_stats.flagstat/flagstat.txt",
        "stats_md5": "/work/bam_stats.checksum/md5.txt",
    }
