"""
Tasks wrapping XenoCP, which removes host (e.g. mouse) reads from xenograft samples.

Cleansing compares each mapped read of the sample against its alignment to the
host genome, and keeps the reads that align better to the graft.
"""

import enum

from seqflow import File, Script, script, task

seqflow_namespace = "xenocp"

IMAGE = "stjudecloud/xenocp:3.1.4"


class XenocpAligner(enum.Enum):
    """
    Aligners available for mapping reads to the host genome.
    """

    BWA_ALN = "bwa aln"
    BWA_MEM = "bwa mem"
    STAR = "star"

    def __str__(self) -> str:
        return self.value


@task(image=IMAGE, memory=4, disk=60, outputs={"read_one_fastq": File, "read_two_fastq": File})
def extract_mapped(bam: File) -> Script:
    """
    Extract the mapped read pairs of a BAM, which are the candidates for cleansing.
    """
    prefix = bam.stem(".bam") + ".mapped"
    return script(
        f"""
        samtools view -b -F 0x904 {bam} \\
            | samtools collate -u -O - \\
            | samtools fastq -1 {prefix}_R1.fastq.gz -2 {prefix}_R2.fastq.gz \\
                -0 /dev/null -s /dev/null -
        """,
        outputs={
            "read_one_fastq": File(f"{prefix}_R1.fastq.gz"),
            "read_two_fastq": File(f"{prefix}_R2.fastq.gz"),
        },
    )


@task(
    image=IMAGE,
    memory=8,
    disk=80,
    max_retries=1,
    outputs={"cleansed_bam": File, "cleansed_bai": File, "contaminated_reads": File},
)
def cleanse(bam: File, bai: File, host_bam: File) -> Script:
    """
    Cleanse a graft BAM using the alignments of its reads to the host genome.
    """
    prefix = bam.stem(".bam") + ".xenocp"
    return script(
        f"""
        ln -s {bam} {bam.basename}
        ln -s {bai} {bam.basename}.bai
        xenocp.py cleanse --graft {bam.basename} --host {host_bam} \\
            --output {prefix}.bam --contamination-list {prefix}.contam.txt
        samtools index {prefix}.bam {prefix}.bam.bai
        """,
        outputs={
            "cleansed_bam": File(f"{prefix}.bam"),
            "cleansed_bai": File(f"{prefix}.bam.bai"),
            "contaminated_reads": File(f"{prefix}.contam.txt"),
        },
    )
