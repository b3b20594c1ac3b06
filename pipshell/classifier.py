"""
Module reference classifier.

Decides what kind of dependency a load request names and which path or
package identifier it resolves to. Classification has no side effects:
nothing is imported, installed or touched on disk.

Rules, first match wins:
1. empty or non-string reference      -> InvalidReference
2. starts with a path separator       -> LOCAL, path used as-is
3. starts with "."                    -> LOCAL, anchored at the issuing file
4. starts with "@"                    -> SCOPED, "@scope/name"
5. first segment is a runtime module  -> BUILTIN
6. anything else                      -> ORDINARY, first segment
"""

from __future__ import annotations

import importlib
import os
import re
import sys
from collections.abc import Iterable, Iterator

from .schema import ModuleClassification, ModuleKind

BUILTIN_MODULES: frozenset[str] = frozenset(sys.builtin_module_names) | frozenset(
    sys.stdlib_module_names
)

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
_IMPORTLIB_DIR = os.path.dirname(os.path.abspath(importlib.__file__))
_SEGMENT_SPLIT = re.compile(r"[/.]")


class InvalidReference(ValueError):
    """Reference is empty, not a string, or malformed."""

    pass


class UnresolvableCaller(LookupError):
    """A relative reference could not be anchored to an issuing file."""

    pass


def is_local_reference(reference: str) -> bool:
    """Check whether the reference names a file rather than a package."""
    return reference.startswith(("/", os.sep, "."))


def is_builtin_module(name: str) -> bool:
    """Check whether a top-level name ships with the running interpreter."""
    return name in BUILTIN_MODULES


def import_name(reference: str) -> str:
    """
    Convert a package reference to the dotted name the import system uses.

    "@scope/name/sub" -> "scope.name.sub", "pkg/sub" -> "pkg.sub".
    """
    if reference.startswith("@"):
        reference = reference[1:]
    return ".".join(part for part in reference.split("/") if part)


def _is_internal_frame(filename: str) -> bool:
    if filename.startswith("<frozen"):
        return True
    directory = os.path.dirname(os.path.abspath(filename)) if not filename.startswith("<") else ""
    return directory in (_PACKAGE_DIR, _IMPORTLIB_DIR)


def _live_stack() -> Iterator[str]:
    frame = sys._getframe(1)
    while frame is not None:
        yield frame.f_code.co_filename
        frame = frame.f_back


def find_caller_file(stack: Iterable[str] | None = None) -> str:
    """
    Find the file that issued the current load request.

    Walks the stack (innermost first) and returns the first file that is
    neither part of this package nor an import machinery frame. Pseudo
    files such as "<console>" or "<string>" are anchored at the current
    working directory.

    Args:
        stack: Filenames to search, innermost first. Defaults to the live
            interpreter stack.

    Raises:
        UnresolvableCaller: If every frame is internal.
    """
    for filename in stack if stack is not None else _live_stack():
        if not filename or _is_internal_frame(filename):
            continue
        if filename.startswith("<"):
            return os.path.join(os.getcwd(), filename)
        return os.path.abspath(filename)
    raise UnresolvableCaller("could not determine which file issued the load request")


def _relative_path(reference: str) -> str:
    """Turn "./x", "../x", ".x" or "..pkg.x" into a relative filesystem path."""
    if reference in (".", "..") or reference.startswith(("./", "../", f".{os.sep}", f"..{os.sep}")):
        return reference
    stripped = reference.lstrip(".")
    depth = len(reference) - len(stripped)
    parts = [os.pardir] * (depth - 1)
    if stripped:
        parts.extend(stripped.split("."))
    return os.path.join(*parts) if parts else os.curdir


def classify(reference: str, issuing_file: str | None = None) -> ModuleClassification:
    """
    Classify a load request.

    Args:
        reference: The string code used to request a dependency.
        issuing_file: File that issued the request. Only consulted for
            relative references; discovered from the stack when omitted.

    Returns:
        Immutable classification of the reference.

    Raises:
        InvalidReference: Empty, non-string or malformed reference.
        UnresolvableCaller: Relative reference with no discoverable caller.
    """
    if not isinstance(reference, str) or not reference:
        raise InvalidReference(f"invalid module reference: {reference!r}")

    if reference.startswith(("/", os.sep)):
        return ModuleClassification(reference=reference, kind=ModuleKind.LOCAL, resolved_path=reference)

    if reference.startswith("."):
        anchor = issuing_file or find_caller_file()
        resolved = os.path.normpath(os.path.join(os.path.dirname(anchor), _relative_path(reference)))
        return ModuleClassification(reference=reference, kind=ModuleKind.LOCAL, resolved_path=resolved)

    if reference.startswith("@"):
        segments = reference.split("/")
        if len(segments) < 2 or len(segments[0]) < 2 or not segments[1]:
            raise InvalidReference(f"scoped reference must look like '@scope/name': {reference!r}")
        return ModuleClassification(
            reference=reference,
            kind=ModuleKind.SCOPED,
            resolved_path="/".join(segments[:2]),
        )

    top_level = _SEGMENT_SPLIT.split(reference, maxsplit=1)[0]
    if not top_level:
        raise InvalidReference(f"invalid module reference: {reference!r}")
    kind = ModuleKind.BUILTIN if is_builtin_module(top_level) else ModuleKind.ORDINARY
    return ModuleClassification(reference=reference, kind=kind, resolved_path=top_level)
