import os
import sys
from typing import Iterator

import pytest

from seqflow import Scheduler
from seqflow.backends.db import SeqflowBackendDb
from seqflow.config import Config
from seqflow.utils import clear_import_paths, get_import_paths


@pytest.fixture
def scheduler(tmp_path) -> Iterator[Scheduler]:
    """
    Returns a Scheduler with an in-memory database and a temporary scratch.
    """
    scheduler = Scheduler(config=Config(), scratch=str(tmp_path / "scratch"))
    yield scheduler
    backend = scheduler.backend
    if isinstance(backend, SeqflowBackendDb) and backend.session:
        backend.session.close()


@pytest.fixture
def backend(scheduler: Scheduler) -> SeqflowBackendDb:
    """
    Returns the backend of the test scheduler.
    """
    assert isinstance(scheduler.backend, SeqflowBackendDb)
    return scheduler.backend


@pytest.fixture(autouse=True)
def seqflow_globals():
    """
    pytest fixture for resetting seqflow global state during tests.

    - python modules
    - python sys.path
    - seqflow import paths
    """
    init_module_names = set(sys.modules.keys())
    init_sys_path = list(sys.path)

    yield

    # Remove workflow scripts (and their helpers) imported by the test.
    script_dirs = [os.path.realpath(path) for path in get_import_paths()]
    for module_name, module in list(sys.modules.items()):
        module_file = getattr(module, "__file__", None)
        if (
            module_name not in init_module_names
            and module_file
            and any(os.path.realpath(module_file).startswith(path + os.sep) for path in script_dirs)
        ):
            sys.modules.pop(module_name)

    sys.path[:] = init_sys_path
    clear_import_paths()
