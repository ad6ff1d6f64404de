from seqflow import File, Script, script, task

seqflow_namespace = "md5sum"

IMAGE = "ubuntu:22.04"


@task(image=IMAGE, memory=1, disk=10, max_retries=1, outputs={"md5sum": File})
def compute_checksum(file: File) -> Script:
    """
    Compute the md5 checksum of a file in the format of `md5sum`.
    """
    outfile = file.basename + ".md5"
    return script(
        f"md5sum {file} > {outfile}",
        outputs={"md5sum": File(outfile)},
    )
