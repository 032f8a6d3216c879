"""Extension source discovery, reading and compilation.

Extensions are plain Python scripts. Every ``*.py`` file of the extensions
directory whose name does not start with an underscore is one extension,
named after the file stem. Extensions are returned sorted by name, which is
their declared order: the order of their alerts in the AlertSet.

Example:
    >>> extensions = load_extensions(Path("extensions"))
    >>> [e.name for e in extensions]
    ['disk-usage', 'weather']
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, replace
from pathlib import Path

from alertsmith.errors import CompilationError, ErrorContext, SourceReadError

logger = logging.getLogger(__name__)

EXTENSION_SUFFIX = ".py"


@dataclass(frozen=True)
class Extension:
    """An extension script handed to the sandbox.

    Attributes:
        name: Unique identifier (the file stem)
        source: Script text
    """

    name: str
    source: str


def read_source(path: str | Path) -> str:
    """Read a text file, raising SourceReadError on any I/O failure."""
    path = Path(path)
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise SourceReadError(
            f"Failed to read {path}: {e}",
            context=ErrorContext(path=str(path)),
            cause=e,
        ) from e


def discover_extensions(directory: str | Path) -> list[Path]:
    """List extension files in declared (sorted) order."""
    directory = Path(directory)
    if not directory.is_dir():
        raise SourceReadError(
            f"Extensions directory not found: {directory}",
            context=ErrorContext(path=str(directory)),
            suggestions=[
                "Create the directory and add at least one extension script",
                "Set 'extensions_dir' in alertsmith.yaml",
            ],
        )

    return sorted(
        (
            path
            for path in directory.iterdir()
            if path.is_file()
            and path.suffix == EXTENSION_SUFFIX
            and not path.name.startswith("_")
        ),
        key=lambda path: path.name,
    )


def compile_extension(extension: Extension) -> Extension:
    """Normalize an extension's source and check that it parses.

    Strips a UTF-8 BOM, normalizes line endings and guarantees a trailing
    newline. Syntax errors become CompilationError.
    """
    source = extension.source.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    if source and not source.endswith("\n"):
        source += "\n"

    try:
        ast.parse(source, filename=f"{extension.name}{EXTENSION_SUFFIX}")
    except SyntaxError as e:
        raise CompilationError(
            f"{extension.name}{EXTENSION_SUFFIX}:{e.lineno}: {e.msg}",
            lineno=e.lineno,
            context=ErrorContext(extension_name=extension.name),
            cause=e,
        ) from e

    return replace(extension, source=source)


def load_extensions(directory: str | Path) -> list[Extension]:
    """Read and compile every extension of a directory.

    Raises:
        SourceReadError: If the directory or a file cannot be read
        CompilationError: If any extension fails to compile
    """
    extensions = []
    for path in discover_extensions(directory):
        extension = Extension(name=path.stem, source=read_source(path))
        extensions.append(compile_extension(extension))
        logger.debug(f"Compiled extension {extension.name} from {path}")
    return extensions
