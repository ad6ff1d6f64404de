from typing import Dict

from seqflow import File, Script, script, task

seqflow_namespace = "trimmomatic"

IMAGE = "quay.io/biocontainers/trimmomatic:0.39--hdfd78af_2"

# Quality encoding -> trimmomatic flag.
PHRED_FLAGS: Dict[str, str] = {
    "sanger": "-phred33",
    "illumina1.3": "-phred64",
}


@task(
    image=IMAGE,
    memory=8,
    disk=60,
    max_retries=1,
    outputs={"trimmed_read_one": File, "trimmed_read_two": File, "log": File},
)
def trim(
    read_one_fastq: File,
    read_two_fastq: File,
    phred_encoding: str,
    adapters: str = "TruSeq3-PE.fa",
    min_length: int = 36,
    ncpu: int = 1,
) -> Script:
    """
    Trim adapters and low quality bases from paired-end reads.
    """
    if phred_encoding not in PHRED_FLAGS:
        raise ValueError(f"Unknown quality encoding: {phred_encoding!r}")
    prefix = read_one_fastq.stem("_R1.fastq.gz", ".fastq.gz", ".fq.gz")
    return script(
        f"""
        trimmomatic PE -threads {ncpu} {PHRED_FLAGS[phred_encoding]} \\
            -trimlog {prefix}.trimlog.txt \\
            {read_one_fastq} {read_two_fastq} \\
            {prefix}_R1.trimmed.fastq.gz {prefix}_R1.unpaired.fastq.gz \\
            {prefix}_R2.trimmed.fastq.gz {prefix}_R2.unpaired.fastq.gz \\
            ILLUMINACLIP:{adapters}:2:30:10 LEADING:3 TRAILING:3 SLIDINGWINDOW:4:15 \\
            MINLEN:{min_length}
        """,
        outputs={
            "trimmed_read_one": File(f"{prefix}_R1.trimmed.fastq.gz"),
            "trimmed_read_two": File(f"{prefix}_R2.trimmed.fastq.gz"),
            "log": File(f"{prefix}.trimlog.txt"),
        },
    )
