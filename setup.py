import os

from setuptools import find_packages, setup

requirements = [
    # Using 2.1 instead of 3.0 in case future 2.x versions drop support
    # for some legacy APIs still supported in 2.0
    "sqlalchemy>=1.4.0,<2.1",
    "python-dateutil>=2.8",
    # cython3 and pyyaml conflicts
    # https://github.com/yaml/pyyaml/issues/724#issuecomment-1638591821
    "pyyaml!=6.0.0,!=5.4.0,!=5.4.1",
    "rich>=13.3.5",
]

extras = {
    "test": ["pytest>=7"],
}


def get_version() -> str:
    """
    Get the seqflow package version.
    """
    # Technique from: https://packaging.python.org/guides/single-sourcing-package-version/
    basedir = os.path.dirname(__file__)
    module_path = os.path.join(basedir, "seqflow", "version.py")
    with open(module_path) as infile:
        for line in infile:
            if line.startswith("version ="):
                _, version, _ = line.split('"', 2)
                return version
    assert False, "Cannot find seqflow package version"


setup(
    name="seqflow",
    version=get_version(),
    zip_safe=True,
    packages=find_packages(),
    description="Composes bioinformatics command-line tools into sequencing pipelines.",
    long_description="""
seqflow composes containerized bioinformatics command-line tools into workflows
for sequencing data: alignment, xenograft cleansing and quality control.

seqflow's key features are:

- Tasks wrap one command each and declare their outputs and resources.
- Workflows are plain Python functions whose task calls form a static call graph.
- The experiment type (WGS, WES, RNA-Seq, ChIP-Seq) selects, before anything runs,
  which subgraphs execute. Skipped calls and their outputs are tracked explicitly.
- Sample properties such as strandedness may be given or inferred by a task.
- Jobs run locally or in Docker containers, within resource limits, with retries.
- Run history is recorded in a database and browsable from the command line.
    """,
    scripts=["bin/seqflow"],
    include_package_data=True,
    python_requires=">= 3.8",
    install_requires=requirements,
    extras_require=extras,
)
