"""
Tasks wrapping samtools.
"""

from seqflow import File, Script, script, task

seqflow_namespace = "samtools"

IMAGE = "quay.io/biocontainers/samtools:1.17--h00cdaf9_0"


@task(image=IMAGE, memory=2, disk=10, outputs={"flagstat": File})
def flagstat(bam: File) -> Script:
    outfile = bam.stem(".bam") + ".flagstat.txt"
    return script(
        f"samtools flagstat {bam} > {outfile}",
        outputs={"flagstat": File(outfile)},
    )


@task(image=IMAGE, memory=2, disk=10, outputs={"bai": File})
def index(bam: File, ncpu: int = 1) -> Script:
    """
    Index a coordinate sorted BAM. The index is written next to a link to the BAM.
    """
    return script(
        f"""
        ln -s {bam} {bam.basename}
        samtools index -@ {ncpu} {bam.basename} {bam.basename}.bai
        """,
        outputs={"bai": File(f"{bam.basename}.bai")},
    )


@task(image=IMAGE, memory=4, disk=40, outputs={"sampled_bam": File, "sampled_bai": File})
def subsample(bam: File, desired_reads: int, ncpu: int = 1) -> Script:
    """
    Randomly subsample a BAM down to about `desired_reads` reads.

    BAMs with fewer reads than desired are copied as is.
    """
    prefix = bam.stem(".bam") + ".subsampled"
    return script(
        f"""
        total=$(samtools view -c -F 0x900 {bam})
        if [ "$total" -gt {desired_reads} ]; then
            fraction=$(awk -v d={desired_reads} -v t="$total" 'BEGIN {{ printf "%.6f", d / t }}')
            samtools view -@ {ncpu} -b -s "$fraction" -o {prefix}.bam {bam}
        else
            cp {bam} {prefix}.bam
        fi
        samtools index {prefix}.bam {prefix}.bam.bai
        """,
        outputs={
            "sampled_bam": File(f"{prefix}.bam"),
            "sampled_bai": File(f"{prefix}.bam.bai"),
        },
    )
