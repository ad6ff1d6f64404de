from typing import Dict

from seqflow import File, Script, script, task

seqflow_namespace = "qualimap"

IMAGE = "quay.io/biocontainers/qualimap:2.2.2d--hdfd78af_2"

# Strandedness -> qualimap sequencing protocol.
PROTOCOLS: Dict[str, str] = {
    "Stranded-Reverse": "strand-specific-reverse",
    "Stranded-Forward": "strand-specific-forward",
    "Unstranded": "non-strand-specific",
}


@task(image=IMAGE, memory=16, disk=20, cpu=1, outputs={"results": File})
def bamqc(bam: File, ncpu: int = 1) -> Script:
    """
    Alignment QC of a whole genome or exome BAM.
    """
    prefix = bam.stem(".bam") + ".qualimap_bamqc_results"
    return script(
        f"""
        qualimap bamqc -bam {bam} -outdir {prefix} -nt {ncpu} -nw 400 --java-mem-size=14g
        tar -czf {prefix}.tar.gz {prefix}
        """,
        outputs={"results": File(f"{prefix}.tar.gz")},
    )


@task(image=IMAGE, memory=16, disk=20, outputs={"results": File})
def rnaseq(bam: File, gtf: File, strandedness: str, paired_end: bool = True) -> Script:
    """
    RNA-Seq QC of a BAM against a gene model.

    `strandedness` is one of `Stranded-Reverse`, `Stranded-Forward` or `Unstranded`.
    """
    if strandedness not in PROTOCOLS:
        raise ValueError(f"Unknown strandedness: {strandedness!r}")
    prefix = bam.stem(".bam") + ".qualimap_rnaseq_results"
    paired = "-pe" if paired_end else ""
    return script(
        f"""
        qualimap rnaseq -bam {bam} -gtf {gtf} -outdir {prefix} -oc qualimap_counts.txt \\
            -p {PROTOCOLS[strandedness]} {paired} --java-mem-size=14g
        tar -czf {prefix}.tar.gz {prefix}
        """,
        outputs={"results": File(f"{prefix}.tar.gz")},
    )
