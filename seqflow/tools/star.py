from typing import Optional

from seqflow import File, Script, script, task

seqflow_namespace = "star"

IMAGE = "quay.io/biocontainers/star:2.7.10a--h9ee0642_0"


@task(
    image=IMAGE,
    memory=50,
    disk=100,
    cpu=4,
    max_retries=1,
    outputs={"bam": File, "log": File},
)
def align(
    read_one_fastq: File,
    read_two_fastq: File,
    star_db_tar: File,
    gtf: Optional[File] = None,
    prefix: str = "aligned",
    read_group: str = "",
    ncpu: int = 4,
) -> Script:
    """
    Align paired-end RNA-Seq reads with STAR into a coordinate sorted BAM.

    `star_db_tar` is a tarball of a STAR genome directory. If a gene model is
    given, splice junctions are annotated from it.
    """
    annotation = f"--sjdbGTFfile {gtf}" if gtf else ""
    rg = f"--outSAMattrRGline {read_group}" if read_group else ""
    return script(
        f"""
        mkdir star_db
        tar -C star_db -xzf {star_db_tar} --no-same-owner
        genome_dir=$(dirname "$(find star_db -name SA | head -n 1)")
        STAR --runMode alignReads --runThreadN {ncpu} --genomeDir "$genome_dir" \\
            --readFilesIn {read_one_fastq} {read_two_fastq} --readFilesCommand zcat \\
            --outSAMtype BAM SortedByCoordinate --outSAMunmapped Within \\
            --outFileNamePrefix {prefix}. {annotation} {rg}
        mv {prefix}.Aligned.sortedByCoord.out.bam {prefix}.bam
        """,
        outputs={"bam": File(f"{prefix}.bam"), "log": File(f"{prefix}.Log.final.out")},
    )
