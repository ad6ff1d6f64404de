import shlex
from typing import List

from seqflow import File, Script, script, task

seqflow_namespace = "multiqc"

IMAGE = "quay.io/biocontainers/multiqc:1.14--pyhdfd78af_0"


@task(image=IMAGE, memory=4, disk=10, outputs={"report": File})
def multiqc(input_files: List[File], sample_name: str = "sample") -> Script:
    """
    Aggregate the reports of QC tools into one MultiQC report.

    Archived results (`.tar.gz`) are extracted first.
    """
    paths = " ".join(shlex.quote(file.path) for file in input_files)
    prefix = f"{sample_name}.multiqc"
    return script(
        f"""
        mkdir inputs
        for path in {paths}; do
            case "$path" in
                *.tar.gz) tar -C inputs -xzf "$path" ;;
                *) ln -s "$path" inputs/ ;;
            esac
        done
        multiqc -n {prefix} -o . inputs
        tar -czf {prefix}.tar.gz {prefix}.html {prefix}_data
        """,
        outputs={"report": File(f"{prefix}.tar.gz")},
    )
