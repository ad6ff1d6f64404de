import os
import stat
import subprocess
from textwrap import dedent
from typing import Dict, List, Optional, Union

from seqflow.file import File

# Commands stop at the first failing step, including within pipes.
DEFAULT_SHELL = "#!/usr/bin/env bash\nset -exo pipefail"

# Files written into every job directory.
COMMAND_FILENAME = ".command.sh"
STDOUT_FILENAME = ".stdout"
STDERR_FILENAME = ".stderr"


class ScriptError(Exception):
    """
    A command exited with a non-zero exit code.

    The message shows the exit code and the last line of standard error,
    which is usually the most telling one.
    """

    def __init__(self, stderr: bytes, returncode: Optional[int] = None):
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(stderr, returncode)

    def __str__(self) -> str:
        parts = []
        if self.returncode is not None:
            parts.append(f"Exit code {self.returncode}.")
        text = self.stderr.decode("utf8", errors="replace").strip()
        if text:
            parts.append("Last line: " + text.splitlines()[-1])
        return " ".join(parts)

    def __repr__(self) -> str:
        return f"ScriptError({str(self)!r})"


class Script:
    """
    The rendered command of a task along with the output files it should produce.

    Output paths are relative to the job directory unless absolute.
    """

    def __init__(self, command: str, outputs: Optional[Dict[str, Union[File, str]]] = None):
        self.command = prepare_command(command)
        self.outputs: Dict[str, File] = {
            name: File(path) for name, path in (outputs or {}).items()
        }

    def __repr__(self) -> str:
        return f"Script(outputs={sorted(self.outputs)})"


def script(command: str, outputs: Optional[Dict[str, Union[File, str]]] = None) -> Script:
    """
    Returns the command a task will run and the output files it declares.

    .. code-block:: python

        @task(outputs={"flagstat": File})
        def flagstat(bam: File) -> Script:
            name = bam.stem(".bam") + ".flagstat.txt"
            return script(
                f"samtools flagstat {bam} > {name}",
                outputs={"flagstat": File(name)},
            )
    """
    return Script(command, outputs)


def prepare_command(command: str, default_shell: str = DEFAULT_SHELL) -> str:
    """
    Dedent a command and trim surrounding blank lines.

    Commands without a `#!` interpreter line run with `default_shell`.
    """
    command = dedent(command).strip()
    if command.startswith("#!"):
        return command
    return f"{default_shell.rstrip()}\n{command}"


def write_command_file(command: str, cwd: str) -> str:
    """
    Write a command into the job directory as an executable script.
    """
    command_file = os.path.join(cwd, COMMAND_FILENAME)
    with open(command_file, "w") as out:
        out.write(command)
        out.write("\n")
    mode = os.stat(command_file).st_mode
    os.chmod(command_file, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return command_file


def exec_script(command: str, cwd: str, wrapper: Optional[List[str]] = None) -> bytes:
    """
    Run a script as a subprocess within the directory `cwd`.

    If `wrapper` is given, the script path is appended to it (e.g. a
    `docker run ... bash` prefix). Standard output and error are kept in the
    job directory. Returns the standard output.
    """
    command_file = write_command_file(command, cwd)
    proc = subprocess.run(
        (wrapper or []) + [command_file], cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.PIPE
    )

    for filename, data in ((STDOUT_FILENAME, proc.stdout), (STDERR_FILENAME, proc.stderr)):
        with open(os.path.join(cwd, filename), "wb") as out:
            out.write(data)

    if proc.returncode != 0:
        raise ScriptError(proc.stderr, returncode=proc.returncode)
    return proc.stdout
