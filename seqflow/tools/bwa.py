"""
Tasks wrapping the BWA aligner.

The BWA index is given as a tarball of the reference FASTA and its index files.
"""

from seqflow import File, Script, script, task

seqflow_namespace = "bwa"

# bwa and samtools.
IMAGE = (
    "quay.io/biocontainers/mulled-v2-fe8faa35dbf6dc65a0f7f5d4ea12e31a79f73e40:"
    "219b6c272b25e7e642ae3ff0bf0c5c81a5135ab4-0"
)

# Extracts the index and sets `$ref` to its reference FASTA.
EXTRACT_INDEX = """
mkdir bwa_db
tar -C bwa_db -xzf {bwa_db_tar} --no-same-owner
ref=$(ls bwa_db/*.ann | head -n 1 | sed 's/\\.ann$//')
"""


def format_read_group(read_group: str) -> str:
    """
    Format a read group for the `-R` option.

    'ID:rg1 SM:sample' becomes '@RG\\tID:rg1\\tSM:sample'.
    """
    if not read_group:
        return ""
    fields = read_group.split()
    if fields[0] != "@RG":
        fields.insert(0, "@RG")
    return "-R '{}'".format("\\t".join(fields))


@task(image=IMAGE, memory=24, disk=100, cpu=4, max_retries=1, outputs={"bam": File})
def mem(
    read_one_fastq: File,
    read_two_fastq: File,
    bwa_db_tar: File,
    prefix: str = "aligned",
    read_group: str = "",
    ncpu: int = 4,
) -> Script:
    """
    Align paired-end reads with `bwa mem` into a coordinate sorted BAM.
    """
    return script(
        EXTRACT_INDEX.format(bwa_db_tar=bwa_db_tar)
        + f"""
        bwa mem -t {ncpu} {format_read_group(read_group)} "$ref" \\
            {read_one_fastq} {read_two_fastq} \\
            | samtools sort -@ {ncpu} -o {prefix}.bam -
        """,
        outputs={"bam": File(f"{prefix}.bam")},
    )


@task(image=IMAGE, memory=24, disk=100, cpu=4, max_retries=1, outputs={"bam": File})
def aln_pe(
    read_one_fastq: File,
    read_two_fastq: File,
    bwa_db_tar: File,
    prefix: str = "aligned",
    read_group: str = "",
    ncpu: int = 4,
) -> Script:
    """
    Align paired-end reads with `bwa aln` and `bwa sampe` into a coordinate sorted BAM.
    """
    return script(
        EXTRACT_INDEX.format(bwa_db_tar=bwa_db_tar)
        + f"""
        bwa aln -t {ncpu} "$ref" {read_one_fastq} > read_one.sai
        bwa aln -t {ncpu} "$ref" {read_two_fastq} > read_two.sai
        bwa sampe {format_read_group(read_group)} "$ref" read_one.sai read_two.sai \\
            {read_one_fastq} {read_two_fastq} \\
            | samtools sort -@ {ncpu} -o {prefix}.bam -
        """,
        outputs={"bam": File(f"{prefix}.bam")},
    )
