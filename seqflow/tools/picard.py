"""
Tasks wrapping Picard tools.
"""

from seqflow import File, Script, script, task

seqflow_namespace = "picard"

IMAGE = "quay.io/biocontainers/picard:2.27.5--hdfd78af_0"


@task(image=IMAGE, memory=8, disk=10, outputs={"report": File})
def validate_bam(bam: File, ignore_warnings: bool = True) -> Script:
    """
    Validate the format of a BAM.

    The task fails if errors (or warnings, unless ignored) are found.
    """
    outfile = bam.stem(".bam") + ".ValidateSamFile.txt"
    ignore = "IGNORE_WARNINGS=true" if ignore_warnings else ""
    return script(
        f"""
        picard -Xmx6g ValidateSamFile I={bam} O={outfile} MODE=SUMMARY {ignore} \\
            IGNORE=INVALID_PLATFORM_VALUE IGNORE=MISSING_PLATFORM_VALUE
        """,
        outputs={"report": File(outfile)},
    )


@task(
    image=IMAGE,
    memory=16,
    disk=80,
    max_retries=1,
    outputs={"duplicate_marked_bam": File, "duplicate_marked_bai": File, "metrics": File},
)
def mark_duplicates(bam: File) -> Script:
    prefix = bam.stem(".bam") + ".MarkDuplicates"
    return script(
        f"""
        picard -Xmx14g MarkDuplicates I={bam} O={prefix}.bam M={prefix}.metrics.txt \\
            VALIDATION_STRINGENCY=SILENT CREATE_INDEX=true CREATE_MD5_FILE=false
        mv {prefix}.bai {prefix}.bam.bai
        """,
        outputs={
            "duplicate_marked_bam": File(f"{prefix}.bam"),
            "duplicate_marked_bai": File(f"{prefix}.bam.bai"),
            "metrics": File(f"{prefix}.metrics.txt"),
        },
    )
