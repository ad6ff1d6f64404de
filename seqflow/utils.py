import enum
import json
import sys
from typing import Any, Callable, Iterator, List, Sequence

# Directories of imported workflow scripts, most recent first.
_seqflow_import_paths: List[str] = []

TRUE_STRINGS = ("true", "yes", "y", "1")
FALSE_STRINGS = ("false", "no", "n", "0")


def str2bool(text: str) -> bool:
    """
    Parse a command line or config string into a bool.
    """
    normalized = text.strip().lower()
    if normalized in TRUE_STRINGS:
        return True
    if normalized in FALSE_STRINGS:
        return False
    raise ValueError(
        f"Cannot parse bool: '{text}'. Use one of: {', '.join(TRUE_STRINGS + FALSE_STRINGS)}"
    )


def add_import_path(path: str) -> None:
    """
    Make modules next to a workflow script importable.
    """
    if path in _seqflow_import_paths:
        return
    _seqflow_import_paths.insert(0, path)
    sys.path.insert(0, "" if path == "." else path)


def get_import_paths() -> List[str]:
    return _seqflow_import_paths


def clear_import_paths() -> None:
    """
    Forget the import paths added by :func:`add_import_path`.
    """
    for path in _seqflow_import_paths:
        sys_path = "" if path == "." else path
        if sys_path in sys.path:
            sys.path.remove(sys_path)
    _seqflow_import_paths[:] = []


def _json_default(value: Any) -> Any:
    # Files and enums (e.g. experiment types) are recorded by their plain values.
    if isinstance(value, enum.Enum):
        return value.value
    return str(value)


def json_dumps(value: Any) -> str:
    """
    Serialize call inputs or outputs for the run history.

    Keys are sorted and no whitespace is used around delimiters, so equal
    values always give equal strings.
    """
    return json.dumps(value, separators=(",", ":"), sort_keys=True, default=_json_default)


def iter_nested_value(value: Any) -> Iterator[Any]:
    """
    Iterate through the leaves of call arguments: values nested in lists,
    tuples and dict values.
    """
    if isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_nested_value(item)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_nested_value(item)
    else:
        yield value


def map_nested_value(func: Callable[[Any], Any], value: Any) -> Any:
    """
    Apply `func` to the leaves of call arguments, keeping their structure.

    Dict keys are left as is.
    """
    if isinstance(value, list):
        return [map_nested_value(func, item) for item in value]
    if isinstance(value, tuple):
        items = [map_nested_value(func, item) for item in value]
        # Namedtuples take their fields as positional arguments.
        return type(value)(*items) if hasattr(value, "_fields") else tuple(items)
    if isinstance(value, dict):
        return {key: map_nested_value(func, item) for key, item in value.items()}
    return func(value)


def trim_string(text: str, max_length: int = 200, ellipsis: str = "...") -> str:
    """
    Shorten long argument values in log lines.
    """
    assert max_length >= len(ellipsis)
    if len(text) <= max_length:
        return text
    return text[: max_length - len(ellipsis)] + ellipsis


def format_table(rows: Sequence[Sequence[Any]], justs: str, min_width: int = 0) -> Iterator[str]:
    """
    Format rows as text columns. `justs` gives one of `l` or `r` per column.

    A blank line separates the header (first row) from the body.
    """
    cells = [[str(cell) for cell in row] for row in rows]
    assert all(len(row) == len(justs) for row in cells)

    widths = [max([min_width] + [len(cell) for cell in column]) for column in zip(*cells)]
    for i, row in enumerate(cells):
        if i == 1:
            yield ""
        yield " ".join(
            cell.ljust(width) if just == "l" else cell.rjust(width)
            for cell, just, width in zip(row, justs, widths)
        )
