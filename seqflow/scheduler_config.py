import os
from configparser import SectionProxy
from typing import Optional

from seqflow.config import Config, create_config_section

SEQFLOW_CONFIG_ENV = "SEQFLOW_CONFIG"
SEQFLOW_CONFIG_DIR = ".seqflow"
SEQFLOW_INI_FILE = "seqflow.ini"
DEFAULT_DB_URI = "sqlite:///seqflow.db"
DEFAULT_SCRATCH = "scratch"
DEFAULT_EXECUTOR = "default"
DEFAULT_SEQFLOW_INI = """\
# seqflow configuration.

[backend]
db_uri = {db_uri}

[scheduler]
# Seconds between job status reports.
job_status_interval = 20
# Root of job directories, relative to the config directory.
scratch = {scratch}

# Total resources of concurrently running jobs.
# [limits]
# cpu = 8
# memory = 32

[executors.default]
type = local
max_workers = 20

# [executors.docker]
# type = docker
#
# # Optional:
# image =
# cleanup = True
"""


SQLITE_PREFIX = "sqlite:///"


def get_abs_db_uri(db_uri: str, config_dir: str, cwd: Optional[str] = None) -> str:
    """
    Returns `db_uri` with an absolute sqlite database path.

    Relative sqlite paths are relative to `config_dir`, itself relative to `cwd`.
    Other databases and in-memory sqlite are returned as is.
    """
    if not db_uri.startswith(SQLITE_PREFIX):
        return db_uri
    path = db_uri[len(SQLITE_PREFIX) :]
    if path in ("", ":memory:") or os.path.isabs(path):
        return db_uri
    abs_config_dir = os.path.normpath(os.path.join(cwd or os.getcwd(), config_dir))
    return SQLITE_PREFIX + os.path.join(abs_config_dir, path)


def ensure_section(config: Config, name: str) -> SectionProxy:
    if not config.get(name):
        config[name] = create_config_section()
    return config[name]


def postprocess_config(config: Config, config_dir: str) -> Config:
    """
    Fill in defaults and make paths absolute. `config` is updated in place.

    Parameters
    ----------
    config : Config
        Config read from `config_dir`.
    config_dir : str
        Directory the config came from. The sqlite database and the scratch
        directory are relative to it.
    """
    backend = ensure_section(config, "backend")
    backend["db_uri"] = get_abs_db_uri(backend.get("db_uri") or DEFAULT_DB_URI, config_dir)
    backend["config_dir"] = config_dir

    scheduler = ensure_section(config, "scheduler")
    scratch = os.path.expanduser(scheduler.get("scratch", DEFAULT_SCRATCH))
    scheduler["scratch"] = os.path.normpath(os.path.join(os.getcwd(), config_dir, scratch))

    ensure_section(config, "limits")

    if not config.get("executors"):
        config["executors"] = {DEFAULT_EXECUTOR: create_config_section({"type": "local"})}

    return config
