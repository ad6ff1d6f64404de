import os

import pytest

from seqflow import File, Script, ScriptError, script
from seqflow.scripting import (
    COMMAND_FILENAME,
    STDERR_FILENAME,
    STDOUT_FILENAME,
    exec_script,
    prepare_command,
)


def test_prepare_command() -> None:
    """
    Commands should be dedented and given a default shell.
    """
    command = prepare_command(
        """
        echo hello
        echo bye
        """
    )
    assert command == "#!/usr/bin/env bash\nset -exo pipefail\necho hello\necho bye"

    # An explicit interpreter is kept.
    assert prepare_command("#!/bin/sh\necho hi") == "#!/bin/sh\necho hi"


def test_script_outputs() -> None:
    result = script("touch out.txt", outputs={"out": "out.txt", "log": File("-")})
    assert isinstance(result, Script)
    assert result.outputs == {"out": File("out.txt"), "log": File("-")}
    assert result.outputs["log"].is_stdout


def test_exec_script(tmp_path) -> None:
    """
    Scripts run within their directory and keep their logs there.
    """
    cwd = str(tmp_path)
    stdout = exec_script(prepare_command("echo hello\ntouch out.txt"), cwd)

    assert stdout == b"hello\n"
    assert os.path.exists(os.path.join(cwd, "out.txt"))
    assert os.path.exists(os.path.join(cwd, COMMAND_FILENAME))
    with open(os.path.join(cwd, STDOUT_FILENAME)) as infile:
        assert infile.read() == "hello\n"


def test_exec_script_error(tmp_path) -> None:
    """
    A failing command raises ScriptError with its exit code and last stderr line.
    """
    cwd = str(tmp_path)
    with pytest.raises(ScriptError) as excinfo:
        exec_script(prepare_command("echo boom >&2\nexit 3"), cwd)

    error = excinfo.value
    assert error.returncode == 3
    assert str(error).startswith("Exit code 3. Last line: ")
    with open(os.path.join(cwd, STDERR_FILENAME)) as infile:
        assert "boom" in infile.read()


def test_exec_script_pipefail(tmp_path) -> None:
    """
    Errors within a pipeline should fail the script.
    """
    with pytest.raises(ScriptError):
        exec_script(prepare_command("false | cat"), str(tmp_path))


def test_file_stem_and_abspath() -> None:
    assert File("/data/sample.sorted.bam").stem(".bam") == "sample.sorted"
    assert File("reads_R1.fastq.gz").stem("_R1.fastq.gz", ".fastq.gz") == "reads"
    assert File("notes.txt").stem(".bam") == "notes.txt"

    assert File("out.txt").abspath("/work").path == "/work/out.txt"
    assert File("/abs/out.txt").abspath("/work").path == "/abs/out.txt"
    assert File("-").abspath("/work").path == "-"

    with pytest.raises(ValueError):
        File("")
