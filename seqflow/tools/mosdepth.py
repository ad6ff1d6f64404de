from typing import Optional

from seqflow import File, Script, script, task

seqflow_namespace = "mosdepth"

IMAGE = "quay.io/biocontainers/mosdepth:0.3.3--h37c5b7d_2"


@task(image=IMAGE, memory=8, disk=20, outputs={"summary": File, "global_dist": File})
def coverage(
    bam: File,
    bai: File,
    coverage_bed: Optional[File] = None,
    use_fast_mode: bool = True,
) -> Script:
    """
    Compute depth of coverage, optionally restricted to the regions of a BED file.
    """
    prefix = bam.stem(".bam")
    if coverage_bed:
        prefix += "." + coverage_bed.stem(".bed")
    regions = f"-b {coverage_bed}" if coverage_bed else ""
    fast = "-x" if use_fast_mode else ""
    return script(
        f"""
        ln -s {bam} {bam.basename}
        ln -s {bai} {bam.basename}.bai
        mosdepth -n {fast} {regions} {prefix} {bam.basename}
        """,
        outputs={
            "summary": File(f"{prefix}.mosdepth.summary.txt"),
            "global_dist": File(f"{prefix}.mosdepth.global.dist.txt"),
        },
    )
