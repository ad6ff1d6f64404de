from seqflow import File, Script, script, task

seqflow_namespace = "deeptools"

IMAGE = "quay.io/biocontainers/deeptools:3.5.1--pyhdfd78af_1"


@task(image=IMAGE, memory=8, disk=20, outputs={"bigwig": File})
def bam_coverage(bam: File, bai: File, ncpu: int = 1) -> Script:
    """
    Compute a normalized coverage track of a BAM as a bigWig.
    """
    prefix = bam.stem(".bam")
    return script(
        f"""
        ln -s {bam} {bam.basename}
        ln -s {bai} {bam.basename}.bai
        bamCoverage --bam {bam.basename} --outFileName {prefix}.bw --outFileFormat bigwig \\
            --numberOfProcessors {ncpu}
        """,
        outputs={"bigwig": File(f"{prefix}.bw")},
    )
