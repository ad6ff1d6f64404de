import os
from unittest.mock import patch

import pytest

from seqflow.cli import get_config_dir, setup_config, setup_scheduler
from seqflow.config import Config, ConfigError
from seqflow.scheduler import SchedulerError, get_limits_from_config
from seqflow.scheduler_config import (
    SEQFLOW_CONFIG_ENV,
    get_abs_db_uri,
    postprocess_config,
)
from seqflow.tests.utils import use_tempdir, write_file


def test_config_parse_sections() -> None:
    config_string = """
[executors.default]
type = local
max_workers = 4

[executors.docker]
type = docker
image = ubuntu:22.04
"""

    config = Config()
    config.read_string(config_string)

    assert sorted(config.keys()) == ["executors"]
    assert config["executors"]["default"]["type"] == "local"
    assert config["executors"]["default"].getint("max_workers") == 4
    assert config["executors"]["docker"]["image"] == "ubuntu:22.04"


def test_get_config_dict() -> None:
    """
    get_config_dict() should reproduce a Config.
    """
    config = Config(
        {
            "executors.docker": {"type": "docker", "image": "ubuntu:22.04"},
            "limits": {"cpu": "8"},
        }
    )
    config2 = Config(config_dict=config.get_config_dict())
    assert config2["executors"]["docker"]["image"] == "ubuntu:22.04"
    assert config2["limits"]["cpu"] == "8"


def test_config_env_interpolation() -> None:
    """
    Variables in a config should fall back to environment variables.
    """
    config = Config()
    with patch.dict(os.environ, {"SEQFLOW_TEST_SCRATCH": "/data/scratch"}):
        config.read_string(
            """
[scheduler]
scratch = ${SEQFLOW_TEST_SCRATCH}/seqflow
"""
        )
        assert config["scheduler"]["scratch"] == "/data/scratch/seqflow"


def test_get_abs_db_uri() -> None:
    assert get_abs_db_uri("sqlite:///seqflow.db", ".seqflow", cwd="/work") == (
        "sqlite:////work/.seqflow/seqflow.db"
    )
    assert get_abs_db_uri("sqlite:////abs/seqflow.db", ".seqflow", cwd="/work") == (
        "sqlite:////abs/seqflow.db"
    )
    assert get_abs_db_uri("sqlite:///:memory:", ".seqflow") == "sqlite:///:memory:"
    assert get_abs_db_uri("postgresql://host/db", ".seqflow") == "postgresql://host/db"


@use_tempdir
def test_postprocess_config() -> None:
    """
    Missing sections should be filled with defaults.
    """
    config = postprocess_config(Config(), ".seqflow")

    assert config["backend"]["db_uri"] == "sqlite:///{}".format(
        os.path.join(os.getcwd(), ".seqflow", "seqflow.db")
    )
    assert config["scheduler"]["scratch"] == os.path.join(os.getcwd(), ".seqflow", "scratch")
    assert config["executors"]["default"]["type"] == "local"
    assert dict(config["limits"]) == {}


@use_tempdir
def test_get_config_dir() -> None:
    """
    get_config_dir() should respect the precedence.
    """
    # Get the default config dir.
    assert get_config_dir() == ".seqflow"

    # Get the CLI-specified config dir.
    assert get_config_dir("seqflow-config") == "seqflow-config"

    # Search up parent directories for config dir.
    os.makedirs(".seqflow")
    expected_config_dir = os.path.join(os.getcwd(), ".seqflow")
    os.makedirs("aaa/bbb")
    os.chdir("aaa/bbb")
    assert get_config_dir() == expected_config_dir

    # Use environment variable for config dir.
    with patch.dict(os.environ, {SEQFLOW_CONFIG_ENV: "seqflow-config-env"}):
        assert get_config_dir() == "seqflow-config-env"


@use_tempdir
def test_setup_scheduler() -> None:
    """
    Ensure the setup of a scheduler from scratch.
    """
    scheduler = setup_scheduler()

    # Ensure initial config dir and files are created.
    assert os.path.exists(".seqflow/seqflow.ini")
    assert os.path.exists(".seqflow/seqflow.db")
    assert scheduler.scratch == os.path.join(os.getcwd(), ".seqflow", "scratch")
    assert sorted(scheduler.executors) == ["default"]


@use_tempdir
def test_setup_scheduler_custom_config() -> None:
    """
    Custom db_uri, executors and limits should be used.
    """
    write_file(
        ".seqflow/seqflow.ini",
        """
[backend]
db_uri = sqlite:///history.db

[limits]
cpu = 8
memory = 64

[executors.default]
type = local

[executors.docker]
type = docker
image = ubuntu:22.04
""",
    )
    scheduler = setup_scheduler()

    assert os.path.exists(".seqflow/history.db")
    assert not os.path.exists(".seqflow/seqflow.db")
    assert scheduler.limits == {"cpu": 8.0, "memory": 64.0}
    assert sorted(scheduler.executors) == ["default", "docker"]


@use_tempdir
def test_setup_config_no_initialize() -> None:
    from seqflow.cli import SeqflowClientError

    with pytest.raises(SeqflowClientError):
        setup_config(initialize=False)


def test_unknown_limits() -> None:
    with pytest.raises(SchedulerError):
        get_limits_from_config({"gpu": "1"})


def test_config_iter_sections() -> None:
    config = Config({"executors.default": {"type": "local"}, "limits": {"cpu": "2"}})
    assert sorted(name for name, _ in config.iter_sections()) == ["executors.default", "limits"]


@pytest.mark.parametrize(
    "config_string",
    [
        "[executors]\ntype = local\n[executors.docker]\ntype = docker\n",
        "[executors.docker]\ntype = docker\n[executors]\ntype = local\n",
    ],
)
def test_config_section_clash(config_string: str) -> None:
    """
    A section cannot also be the group of other sections.
    """
    with pytest.raises(ConfigError):
        Config().read_string(config_string)
