"""
Alignment of paired-end reads into an analysis-ready BAM.
"""

from typing import Optional

from seqflow import (
    QUALITY_ENCODING,
    Experiment,
    File,
    branch,
    branch_if,
    provided_or_inferred,
    select_branches,
    workflow,
)
from seqflow.pipelines.options import require_inputs
from seqflow.pipelines.xenograft import xenograft_cleanse
from seqflow.tools import bwa, md5sum, ngsderive, picard, samtools, star, trimmomatic
from seqflow.tools.xenocp import XenocpAligner

seqflow_namespace = "pipelines"


@workflow(
    outputs={
        "bam": File,
        "bai": File,
        "bam_checksum": File,
        "phred_encoding": str,
        "trim_log": File,
        "star_log": Optional[File],
        "mark_duplicates_metrics": Optional[File],
        "xenocp_contaminated_reads": Optional[File],
    }
)
def alignment(
    read_one_fastq: File,
    read_two_fastq: File,
    experiment: Experiment,
    reference_tar: File,
    gtf: Optional[File] = None,
    phred_encoding: str = "",
    sample_name: str = "sample",
    read_group: str = "",
    mark_duplicates: bool = True,
    cleanse_xenograft: bool = False,
    xenocp_reference_tar: Optional[File] = None,
    xenocp_aligner: XenocpAligner = XenocpAligner.BWA_ALN,
    ncpu: int = 4,
) -> dict:
    """
    Trim and align paired-end reads.

    RNA-Seq reads are aligned with STAR, using `reference_tar` as the STAR genome
    and annotating splice junctions from `gtf`. Other experiments are aligned
    with BWA-MEM, using `reference_tar` as the BWA index.

    The quality encoding is only inferred (from the first read file) when
    `phred_encoding` is empty.
    """
    require_inputs(
        "cleanse_xenograft", cleanse_xenograft, xenocp_reference_tar=xenocp_reference_tar
    )
    branches = select_branches(
        experiment,
        gtf=gtf,
        mark_duplicates=mark_duplicates,
        cleanse_xenograft=cleanse_xenograft,
    )

    encoding = provided_or_inferred(
        phred_encoding,
        QUALITY_ENCODING,
        lambda: ngsderive.infer_encoding(reads=read_one_fastq).encoding,
    )
    trimmed = trimmomatic.trim(
        read_one_fastq=read_one_fastq,
        read_two_fastq=read_two_fastq,
        phred_encoding=encoding.expression,
        ncpu=ncpu,
    )
    outputs = {
        "phred_encoding": encoding.expression,
        "trim_log": trimmed.log,
    }

    with branch(branches, "rna_seq") as rna_seq:
        star_aligned = star.align.options(cpu=ncpu)(
            read_one_fastq=trimmed.trimmed_read_one,
            read_two_fastq=trimmed.trimmed_read_two,
            star_db_tar=reference_tar,
            gtf=gtf,
            prefix=sample_name,
            read_group=read_group,
            ncpu=ncpu,
        )
        outputs["star_log"] = star_aligned.log

    with branch_if("dna", not rna_seq):
        bwa_aligned = bwa.mem.options(cpu=ncpu)(
            read_one_fastq=trimmed.trimmed_read_one,
            read_two_fastq=trimmed.trimmed_read_two,
            bwa_db_tar=reference_tar,
            prefix=sample_name,
            read_group=read_group,
            ncpu=ncpu,
        )

    aligned_bam = star_aligned.bam if rna_seq else bwa_aligned.bam

    with branch(branches, "cleanse_xenograft") as active:
        aligned_index = samtools.index(bam=aligned_bam, ncpu=ncpu)
        cleansed = xenograft_cleanse(
            bam=aligned_bam,
            bai=aligned_index.bai,
            reference_tar=xenocp_reference_tar,
            aligner=xenocp_aligner,
        )
        outputs["xenocp_contaminated_reads"] = cleansed.contaminated_reads
        if active:
            aligned_bam = cleansed.bam

    with branch(branches, "mark_duplicates") as active:
        markdup = picard.mark_duplicates(bam=aligned_bam)
        outputs["mark_duplicates_metrics"] = markdup.metrics
        if active:
            aligned_bam = markdup.duplicate_marked_bam

    outputs["bam"] = aligned_bam
    outputs["bai"] = samtools.index(bam=aligned_bam, ncpu=ncpu).bai
    outputs["bam_checksum"] = md5sum.compute_checksum(file=aligned_bam).md5sum
    return outputs
