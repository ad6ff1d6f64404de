import os
from typing import IO, Any, Optional, Union

STDOUT_PATH = "-"


class File:
    """
    Reference to a file consumed or produced by a task.

    Files are passed between tasks by path; the contents are never copied by
    seqflow itself. The special path `-` stands for the standard output of the
    task command.
    """

    type_basename = "File"

    def __init__(self, path: Union[str, "File"]):
        if isinstance(path, File):
            path = path.path
        if not isinstance(path, str) or not path:
            raise ValueError(f"Invalid file path: {path!r}")
        self.path: str = path

    def __repr__(self) -> str:
        return f"{self.type_basename}(path={self.path})"

    def __str__(self) -> str:
        return self.path

    def __fspath__(self) -> str:
        return self.path

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, File) and self.path == other.path

    def __hash__(self) -> int:
        return hash((self.type_basename, self.path))

    @property
    def is_stdout(self) -> bool:
        return self.path == STDOUT_PATH

    @property
    def basename(self) -> str:
        return os.path.basename(self.path)

    @property
    def dirname(self) -> str:
        return os.path.dirname(self.path)

    def stem(self, *suffixes: str) -> str:
        """
        Returns the basename with the first matching suffix removed.

        .. code-block:: python

            File("/data/sample.sorted.bam").stem(".bam")  # "sample.sorted"
        """
        name = self.basename
        for suffix in suffixes:
            if suffix and name.endswith(suffix):
                return name[: -len(suffix)]
        return name

    def abspath(self, base: Optional[str] = None) -> "File":
        """
        Returns a File with an absolute path, resolving relative paths against `base`.
        """
        if self.is_stdout or os.path.isabs(self.path):
            return File(self.path)
        return File(os.path.normpath(os.path.join(base or os.getcwd(), self.path)))

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def open(self, mode: str = "r", encoding: Optional[str] = None) -> IO:
        return open(self.path, mode, encoding=encoding)

    def read(self, mode: str = "r", encoding: Optional[str] = None) -> Union[str, bytes]:
        with self.open(mode=mode, encoding=encoding) as infile:
            data = infile.read()
        return data
