"""
Quality control of an aligned sample.

Every sample gets the common checks (checksum, validation, flagstat, FastQC and
ngsderive inferences). The experiment type then selects one coverage subgraph:

- WGS and WES: mosdepth coverage and Qualimap bamqc.
- RNA-Seq: strandedness inference and Qualimap rnaseq.
- ChIP-Seq: phantompeakqualtools and a deepTools bigwig.

Subsampling, duplicate marking and xenograft cleansing are optional steps that
replace the BAM used by every later check. All reports are aggregated by MultiQC.
"""

from typing import List, Optional

from seqflow import (
    QUALITY_ENCODING,
    STRANDEDNESS,
    Experiment,
    File,
    branch,
    provided_or_inferred,
    select_all,
    select_branches,
    workflow,
)
from seqflow.pipelines.options import require_inputs
from seqflow.pipelines.xenograft import xenograft_cleanse
from seqflow.tools import (
    deeptools,
    fastqc,
    md5sum,
    mosdepth,
    multiqc,
    ngsderive,
    phantompeakqualtools,
    picard,
    qualimap,
    samtools,
)
from seqflow.tools.xenocp import XenocpAligner

seqflow_namespace = "pipelines"

# Reports aggregated by MultiQC, in report order.
MULTIQC_INPUTS = [
    "validate_report",
    "flagstat",
    "fastqc_results",
    "instrument_report",
    "read_length_report",
    "encoding_report",
    "mark_duplicates_metrics",
    "mosdepth_summary",
    "mosdepth_global_dist",
    "qualimap_bamqc",
    "strandedness_report",
    "qualimap_rnaseq",
    "spp_results",
]


@workflow(
    outputs={
        "bam_checksum": File,
        "validate_report": File,
        "flagstat": File,
        "fastqc_results": File,
        "instrument_report": File,
        "read_length_report": File,
        "encoding_report": File,
        "phred_encoding": str,
        "multiqc_report": File,
        "subsampled_bam": Optional[File],
        "xenocp_contaminated_reads": Optional[File],
        "mark_duplicates_metrics": Optional[File],
        "mosdepth_summary": Optional[File],
        "mosdepth_global_dist": Optional[File],
        "mosdepth_region_summaries": Optional[List[File]],
        "qualimap_bamqc": Optional[File],
        "strandedness": Optional[str],
        "strandedness_report": Optional[File],
        "qualimap_rnaseq": Optional[File],
        "spp_results": Optional[File],
        "bigwig": Optional[File],
    }
)
def quality_check(
    bam: File,
    bai: File,
    experiment: Experiment,
    gtf: Optional[File] = None,
    strandedness: str = "",
    phred_encoding: str = "",
    paired_end: bool = True,
    subsample_n_reads: int = -1,
    mark_duplicates: bool = False,
    cleanse_xenograft: bool = False,
    xenocp_reference_tar: Optional[File] = None,
    xenocp_aligner: XenocpAligner = XenocpAligner.BWA_ALN,
    coverage_beds: Optional[List[File]] = None,
    ncpu: int = 1,
) -> dict:
    """
    Run quality control over an aligned, coordinate sorted BAM.

    Parameters
    ----------
    bam : File
        The sample BAM.
    bai : File
        Index of `bam`.
    experiment : Experiment
        One of WGS, WES, RNA-Seq or ChIP-Seq.
    gtf : Optional[File]
        Gene model. Required for RNA-Seq.
    strandedness : str
        RNA-Seq library strandedness. Inferred with ngsderive when empty.
    phred_encoding : str
        Quality encoding of the reads. Inferred with ngsderive when empty.
    subsample_n_reads : int
        Subsample the BAM to about this many reads before QC. Disabled if <= 0.
    mark_duplicates : bool
        Mark duplicates before QC. Their metrics are reported.
    cleanse_xenograft : bool
        Remove host reads before QC. Requires `xenocp_reference_tar`.
    coverage_beds : Optional[List[File]]
        Regions to report coverage over, for WGS and WES.
    """
    STRANDEDNESS.validate(strandedness)
    QUALITY_ENCODING.validate(phred_encoding)
    require_inputs(
        "cleanse_xenograft", cleanse_xenograft, xenocp_reference_tar=xenocp_reference_tar
    )
    branches = select_branches(
        experiment,
        gtf=gtf,
        subsample=subsample_n_reads > 0,
        mark_duplicates=mark_duplicates,
        cleanse_xenograft=cleanse_xenograft,
    )

    outputs = {
        "bam_checksum": md5sum.compute_checksum(file=bam).md5sum,
        "validate_report": picard.validate_bam(bam=bam).report,
    }

    qc_bam, qc_bai = bam, bai
    with branch(branches, "subsample") as active:
        sampled = samtools.subsample(bam=qc_bam, desired_reads=subsample_n_reads, ncpu=ncpu)
        outputs["subsampled_bam"] = sampled.sampled_bam
        if active:
            qc_bam, qc_bai = sampled.sampled_bam, sampled.sampled_bai

    with branch(branches, "cleanse_xenograft") as active:
        cleansed = xenograft_cleanse(
            bam=qc_bam, bai=qc_bai, reference_tar=xenocp_reference_tar, aligner=xenocp_aligner
        )
        outputs["xenocp_contaminated_reads"] = cleansed.contaminated_reads
        if active:
            qc_bam, qc_bai = cleansed.bam, cleansed.bai

    with branch(branches, "mark_duplicates") as active:
        markdup = picard.mark_duplicates(bam=qc_bam)
        outputs["mark_duplicates_metrics"] = markdup.metrics
        if active:
            qc_bam, qc_bai = markdup.duplicate_marked_bam, markdup.duplicate_marked_bai

    outputs["flagstat"] = samtools.flagstat(bam=qc_bam).flagstat
    outputs["fastqc_results"] = fastqc.fastqc(bam=qc_bam, ncpu=ncpu).results
    outputs["instrument_report"] = ngsderive.infer_instrument(bam=qc_bam).report
    outputs["read_length_report"] = ngsderive.infer_read_length(bam=qc_bam, bai=qc_bai).report

    # The encoding report is always produced, even when the encoding is given.
    encoding = ngsderive.infer_encoding(reads=qc_bam)
    outputs["encoding_report"] = encoding.report
    outputs["phred_encoding"] = provided_or_inferred(
        phred_encoding, QUALITY_ENCODING, encoding.encoding
    ).expression

    with branch(branches, "wgs_wes") as wgs_wes:
        coverage = mosdepth.coverage(bam=qc_bam, bai=qc_bai)
        outputs["mosdepth_summary"] = coverage.summary
        outputs["mosdepth_global_dist"] = coverage.global_dist
        region_summaries = [
            mosdepth.coverage(bam=qc_bam, bai=qc_bai, coverage_bed=bed).summary
            for bed in coverage_beds or []
        ]
        outputs["qualimap_bamqc"] = (
            qualimap.bamqc.options(cpu=ncpu)(bam=qc_bam, ncpu=ncpu).results
        )
        if wgs_wes and region_summaries:
            outputs["mosdepth_region_summaries"] = select_all(region_summaries)

    with branch(branches, "rna_seq") as rna_seq:
        inferred = ngsderive.infer_strandedness(bam=qc_bam, bai=qc_bai, gtf=gtf)
        resolution = provided_or_inferred(strandedness, STRANDEDNESS, inferred.strandedness)
        outputs["strandedness_report"] = inferred.report
        outputs["qualimap_rnaseq"] = qualimap.rnaseq(
            bam=qc_bam, gtf=gtf, strandedness=resolution.expression, paired_end=paired_end
        ).results
        if rna_seq:
            outputs["strandedness"] = resolution.expression

    with branch(branches, "chip_seq"):
        outputs["spp_results"] = (
            phantompeakqualtools.run_spp.options(cpu=ncpu)(bam=qc_bam, ncpu=ncpu).results
        )
        outputs["bigwig"] = (
            deeptools.bam_coverage.options(cpu=ncpu)(bam=qc_bam, bai=qc_bai, ncpu=ncpu).bigwig
        )

    reports = [outputs[name] for name in MULTIQC_INPUTS if name in outputs]
    outputs["multiqc_report"] = multiqc.multiqc(
        input_files=select_all(reports), sample_name=bam.stem(".bam")
    ).report
    return outputs
