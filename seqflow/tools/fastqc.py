from seqflow import File, Script, script, task

seqflow_namespace = "fastqc"

IMAGE = "quay.io/biocontainers/fastqc:0.11.9--hdfd78af_1"


@task(image=IMAGE, memory=4, disk=20, max_retries=1, outputs={"results": File})
def fastqc(bam: File, ncpu: int = 1) -> Script:
    """
    Run FastQC on the reads of a BAM and archive the reports.
    """
    prefix = bam.stem(".bam") + "_fastqc_results"
    return script(
        f"""
        mkdir {prefix}
        fastqc -f bam -o {prefix} -t {ncpu} {bam}
        tar -czf {prefix}.tar.gz {prefix}
        """,
        outputs={"results": File(f"{prefix}.tar.gz")},
    )
