from seqflow import File, Script, script, task

seqflow_namespace = "phantompeakqualtools"

IMAGE = "quay.io/biocontainers/phantompeakqualtools:1.2.2--hdfd78af_1"


@task(image=IMAGE, memory=8, disk=20, outputs={"results": File})
def run_spp(bam: File, ncpu: int = 1) -> Script:
    """
    Estimate fragment length and ChIP-Seq quality measures (NSC, RSC) with SPP.
    """
    prefix = bam.stem(".bam")
    return script(
        f"""
        run_spp.R -c={bam} -p={ncpu} -savp={prefix}.spp.pdf -out={prefix}.spp.txt
        """,
        outputs={"results": File(f"{prefix}.spp.txt")},
    )
