"""
Tasks wrapping ngsderive, which infers sample properties from the reads themselves.

Each inference task reports a single-line result (e.g. `Stranded-Reverse`) as a
`str` output next to the full report. Results outside of the expected values,
such as `Inconclusive`, are passed on as is and rejected by their consumers.
"""

from seqflow import File, Script, script, task

seqflow_namespace = "ngsderive"

IMAGE = "quay.io/biocontainers/ngsderive:3.3.2--pyhdfd78af_0"


@task(
    image=IMAGE,
    memory=4,
    disk=20,
    max_retries=1,
    outputs={"strandedness": str, "report": File},
)
def infer_strandedness(bam: File, bai: File, gtf: File, num_genes: int = 1000) -> Script:
    """
    Infer the strandedness of an RNA-Seq library from reads over a gene model.
    """
    prefix = bam.stem(".bam")
    return script(
        f"""
        ln -s {bam} {bam.basename}
        ln -s {bai} {bam.basename}.bai
        ngsderive strandedness --verbose -g {gtf} -n {num_genes} {bam.basename} \\
            > {prefix}.strandedness.tsv
        tail -n 1 {prefix}.strandedness.tsv | cut -f 5 > strandedness.txt
        """,
        outputs={
            "strandedness": File("strandedness.txt"),
            "report": File(f"{prefix}.strandedness.tsv"),
        },
    )


@task(
    image=IMAGE,
    memory=4,
    disk=20,
    max_retries=1,
    outputs={"encoding": str, "report": File},
)
def infer_encoding(reads: File, num_reads: int = 1000000) -> Script:
    """
    Infer the quality score encoding of a FASTQ or BAM.

    The probable encoding is reported as `sanger` or `illumina1.3`.
    """
    prefix = reads.stem(".bam", ".fastq.gz", ".fq.gz")
    return script(
        f"""
        ngsderive encoding -n {num_reads} {reads} > {prefix}.encoding.tsv
        tail -n 1 {prefix}.encoding.tsv | cut -f 3 | awk '
            /Sanger/ {{ print "sanger"; next }}
            /Illumina 1\\.3/ {{ print "illumina1.3"; next }}
            {{ print }}
        ' > encoding.txt
        """,
        outputs={
            "encoding": File("encoding.txt"),
            "report": File(f"{prefix}.encoding.tsv"),
        },
    )


@task(image=IMAGE, memory=4, disk=20, max_retries=1, outputs={"report": File})
def infer_read_length(bam: File, bai: File) -> Script:
    prefix = bam.stem(".bam")
    return script(
        f"""
        ln -s {bam} {bam.basename}
        ln -s {bai} {bam.basename}.bai
        ngsderive readlen {bam.basename} > {prefix}.readlength.tsv
        """,
        outputs={"report": File(f"{prefix}.readlength.tsv")},
    )


@task(image=IMAGE, memory=4, disk=20, max_retries=1, outputs={"report": File})
def infer_instrument(bam: File, num_reads: int = 10000) -> Script:
    prefix = bam.stem(".bam")
    return script(
        f"ngsderive instrument -n {num_reads} {bam} > {prefix}.instrument.tsv",
        outputs={"report": File(f"{prefix}.instrument.tsv")},
    )
