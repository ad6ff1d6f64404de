"""
Removal of host-derived reads from xenograft samples.
"""

from seqflow import File, branch_if, workflow
from seqflow.tools import bwa, star, xenocp
from seqflow.tools.xenocp import XenocpAligner

seqflow_namespace = "pipelines"


@workflow(outputs={"bam": File, "bai": File, "contaminated_reads": File})
def xenograft_cleanse(
    bam: File,
    bai: File,
    reference_tar: File,
    aligner: XenocpAligner = XenocpAligner.BWA_ALN,
) -> dict:
    """
    Realign the mapped reads of a graft BAM to the host genome and drop the
    reads that align better to the host.

    `reference_tar` is the host index matching `aligner`: a STAR genome tarball
    for `star`, a BWA index tarball otherwise.
    """
    mapped = xenocp.extract_mapped(bam=bam)

    with branch_if("xenocp_star", aligner == XenocpAligner.STAR) as use_star:
        star_host = star.align(
            read_one_fastq=mapped.read_one_fastq,
            read_two_fastq=mapped.read_two_fastq,
            star_db_tar=reference_tar,
            prefix="host",
        )
    with branch_if("xenocp_bwa_mem", aligner == XenocpAligner.BWA_MEM) as use_mem:
        mem_host = bwa.mem(
            read_one_fastq=mapped.read_one_fastq,
            read_two_fastq=mapped.read_two_fastq,
            bwa_db_tar=reference_tar,
            prefix="host",
        )
    with branch_if("xenocp_bwa_aln", aligner == XenocpAligner.BWA_ALN):
        aln_host = bwa.aln_pe(
            read_one_fastq=mapped.read_one_fastq,
            read_two_fastq=mapped.read_two_fastq,
            bwa_db_tar=reference_tar,
            prefix="host",
        )

    if use_star:
        host_bam = star_host.bam
    elif use_mem:
        host_bam = mem_host.bam
    else:
        host_bam = aln_host.bam

    cleansed = xenocp.cleanse(bam=bam, bai=bai, host_bam=host_bam)
    return {
        "bam": cleansed.cleansed_bam,
        "bai": cleansed.cleansed_bai,
        "contaminated_reads": cleansed.contaminated_reads,
    }
