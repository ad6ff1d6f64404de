import pytest

from seqflow import BranchSet, Experiment, File, ValidationError, select_branches
from seqflow.branching import parse_enum


def test_select_branches() -> None:
    """
    Experiment types map onto exclusive branch tags.
    """
    assert select_branches("WGS") == BranchSet(["wgs_wes"])
    assert select_branches(Experiment.WES) == BranchSet(["wgs_wes"])
    assert select_branches("ChIP-Seq") == BranchSet(["chip_seq"])
    assert select_branches("RNA-Seq", gtf=File("genes.gtf")) == BranchSet(["rna_seq"])


def test_select_branches_steps() -> None:
    """
    True optional steps become active tags.
    """
    branches = select_branches("WGS", subsample=True, mark_duplicates=False)
    assert list(branches) == ["subsample", "wgs_wes"]
    assert branches.is_active("subsample")
    assert not branches.is_active("mark_duplicates")
    assert branches.exclusive_tag("experiment") == "wgs_wes"


def test_select_branches_invalid() -> None:
    # Unknown experiment types are rejected before anything runs.
    with pytest.raises(ValidationError) as excinfo:
        select_branches("Hi-C")
    assert "'Hi-C'" in str(excinfo.value)

    # RNA-Seq needs a gene model.
    with pytest.raises(ValidationError):
        select_branches("RNA-Seq")

    # Step names may not shadow experiment tags.
    with pytest.raises(ValidationError):
        select_branches("WGS", rna_seq=True)


def test_branch_set_exclusive() -> None:
    with pytest.raises(ValidationError):
        BranchSet(["wgs_wes", "rna_seq"])


def test_parse_enum() -> None:
    assert parse_enum(Experiment, "RNA-Seq") == Experiment.RNA_SEQ
    assert parse_enum(Experiment, "RNA_SEQ") == Experiment.RNA_SEQ
    assert parse_enum(Experiment, "Experiment.RNA_SEQ") == Experiment.RNA_SEQ
    assert parse_enum(Experiment, Experiment.WGS) == Experiment.WGS

    with pytest.raises(ValidationError):
        parse_enum(Experiment, "rna-seq")

    # ValidationError is a ValueError so that argparse reports it as a bad argument.
    assert issubclass(ValidationError, ValueError)
