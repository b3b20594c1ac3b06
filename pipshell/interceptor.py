"""
Load interceptor: turns a failed load of a third-party package into an
install followed by exactly one retry.

Per request:
    Requested -> Classified -> NativeAttempt -> Satisfied
                                             -> NeedsInstall -> Installing -> RetryAttempt -> Satisfied | Failed

Two entry points share the pipeline:
- LoadInterceptor.resolve(reference, issuing_file) for string references
  (files, scoped packages, dotted or slash separated module paths)
- OnDemandFinder, appended once to sys.meta_path, for plain ``import``
  statements. Sitting after the standard finders, it only sees top-level
  names that the native lookup could not find.
"""

from __future__ import annotations

import importlib
import importlib.abc
import importlib.machinery
import importlib.util
import logging
import site
import sys
import sysconfig
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import ModuleType

from .classifier import InvalidReference, UnresolvableCaller, classify, find_caller_file, import_name
from .installer import InstallerBridge
from .schema import ModuleClassification, ModuleKind
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)


def library_dirs() -> tuple[Path, ...]:
    """Directories holding the interpreter's standard library and site packages."""
    paths = sysconfig.get_paths()
    dirs = {paths.get(key) for key in ("stdlib", "platstdlib", "purelib", "platlib")}
    dirs.update(site.getsitepackages())
    if site.ENABLE_USER_SITE:
        dirs.add(site.getusersitepackages())
    return tuple(Path(d).resolve() for d in dirs if d)


def _locate_source(path: str) -> Path | None:
    """Find the file a local reference points at: path, path.py or path/__init__.py."""
    base = Path(path)
    for candidate in (base, Path(f"{path}.py"), base / "__init__.py"):
        if candidate.is_file():
            return candidate
    return None


def _misses_requested_module(error: ModuleNotFoundError, dotted: str) -> bool:
    """Check that the missing module is the requested one or one of its parents."""
    if error.name is None:
        return True
    return dotted == error.name or dotted.startswith(f"{error.name}.")


def _evict_modules(top_level: str) -> None:
    """Forget a package and its submodules so the next import reloads them."""
    for name in [n for n in sys.modules if n == top_level or n.startswith(f"{top_level}.")]:
        del sys.modules[name]


class LoadInterceptor:
    """
    Orchestrates classification, native loading, installing and retrying.

    Usage:
        interceptor = LoadInterceptor(workspace, InstallerBridge(workspace))
        requests = interceptor.resolve("requests")
        utils = interceptor.resolve("./utils", issuing_file="/proj/app.py")
    """

    def __init__(
        self,
        workspace: WorkspaceManager,
        installer: InstallerBridge,
        intercept_library_imports: bool = False,
    ):
        """
        Initialize load interceptor.

        Args:
            workspace: Workspace whose dependency cache receives installs
            installer: Bridge to the external installer
            intercept_library_imports: Also install packages that installed
                libraries or the standard library try to import (default:
                only imports issued by session code)
        """
        self.workspace = workspace
        self.installer = installer
        self.intercept_library_imports = intercept_library_imports
        self._local_modules: dict[Path, ModuleType] = {}
        self._library_dirs = library_dirs()

    def resolve(self, reference: str, issuing_file: str | None = None) -> ModuleType:
        """
        Load a module, installing its package first if it is missing.

        Args:
            reference: Module reference ("requests", "pkg/sub", "@scope/name",
                "./utils", "/abs/path/mod")
            issuing_file: File issuing the request, used to anchor relative
                references (discovered from the stack when omitted)

        Returns:
            The loaded module

        Raises:
            InvalidReference: Malformed reference
            UnresolvableCaller: Relative reference without an issuing file
            InstallationFailed: The installer failed; not retried
            ModuleNotFoundError: Missing local or built-in module, or the
                reference is still missing after one install
        """
        classification = classify(reference, issuing_file)
        self.workspace.register_search_path()

        with suspend_hook():
            try:
                return self._native_load(classification)
            except ModuleNotFoundError as e:
                if not classification.is_installable or not _misses_requested_module(
                    e, import_name(classification.reference)
                ):
                    raise
                logger.debug("Native load of %r failed (%s), installing", reference, e)

            self.installer.install(classification.resolved_path, self.workspace.path)
            return self._load_from_cache(classification)

    def find_missing(self, fullname: str) -> importlib.machinery.ModuleSpec | None:
        """
        Install a top-level package the import system could not find.

        Returns:
            Spec found in the dependency cache after installing, or None if
            the name is not eligible for installation
        """
        try:
            classification = classify(fullname)
        except InvalidReference:
            return None
        if not classification.is_installable:
            return None
        if not self.intercept_library_imports and self._issued_by_library():
            logger.debug("Not installing %r: import issued by an installed library", fullname)
            return None

        self.workspace.register_search_path()
        self.installer.install(classification.resolved_path, self.workspace.path)
        importlib.invalidate_caches()
        return importlib.machinery.PathFinder.find_spec(fullname, self._cache_paths())

    def _cache_paths(self) -> list[str]:
        return list(self.workspace.search_paths) or [str(self.workspace.cache_dir)]

    def _issued_by_library(self) -> bool:
        try:
            origin = Path(find_caller_file()).resolve()
        except UnresolvableCaller:
            return True
        dirs = (*self._library_dirs, self.workspace.cache_dir.resolve())
        return any(origin.is_relative_to(d) for d in dirs)

    def _native_load(self, classification: ModuleClassification) -> ModuleType:
        if classification.kind is ModuleKind.LOCAL:
            return self._load_file(classification.resolved_path)
        return importlib.import_module(import_name(classification.reference))

    def _load_file(self, path: str) -> ModuleType:
        location = _locate_source(path)
        if location is None:
            raise ModuleNotFoundError(f"Cannot find module '{path}'", name=path, path=path)
        location = location.resolve()

        cached = self._local_modules.get(location)
        if cached is not None:
            return cached

        is_package = location.name == "__init__.py"
        spec = importlib.util.spec_from_file_location(
            location.parent.name if is_package else location.stem,
            location,
            submodule_search_locations=[str(location.parent)] if is_package else None,
        )
        if spec is None or spec.loader is None:
            raise ModuleNotFoundError(f"Cannot load module from '{location}'", name=path, path=str(location))

        module = importlib.util.module_from_spec(spec)
        self._local_modules[location] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            del self._local_modules[location]
            raise
        return module

    def _load_from_cache(self, classification: ModuleClassification) -> ModuleType:
        """
        Retry a load against the dependency cache. Whatever happens is final.

        The top-level package is loaded from the cache itself, replacing any
        copy the native attempt picked up elsewhere on the search path; the
        requested subpath is then imported beneath it.
        """
        importlib.invalidate_caches()
        dotted = import_name(classification.reference)
        top_level = dotted.split(".", 1)[0]
        spec = importlib.machinery.PathFinder.find_spec(top_level, self._cache_paths())
        if spec is None:
            raise ModuleNotFoundError(
                f"Installed '{classification.resolved_path}' into {self.workspace.cache_dir} "
                f"but '{top_level}' is still not importable from it",
                name=top_level,
            )

        _evict_modules(top_level)
        module = importlib.util.module_from_spec(spec)
        sys.modules[top_level] = module
        try:
            if spec.loader is not None:
                spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(top_level, None)
            raise

        if dotted == top_level:
            return module
        return importlib.import_module(dotted)


class OnDemandFinder(importlib.abc.MetaPathFinder):
    """Meta path finder that installs missing top-level packages."""

    def __init__(self, interceptor: LoadInterceptor):
        self.interceptor = interceptor
        self._suspended = 0
        self._in_flight: set[str] = set()

    def find_spec(self, fullname, path=None, target=None):
        # Submodules resolve against their already-installed parent
        if path is not None or self._suspended or fullname in self._in_flight:
            return None
        self._in_flight.add(fullname)
        try:
            return self.interceptor.find_missing(fullname)
        finally:
            self._in_flight.discard(fullname)


# Process-wide hook state
_finder: OnDemandFinder | None = None


def install_hook(interceptor: LoadInterceptor) -> OnDemandFinder:
    """
    Route failed imports through the interceptor.

    The finder is created once per process; installing again only
    retargets it at the new interceptor.
    """
    global _finder
    if _finder is None:
        _finder = OnDemandFinder(interceptor)
    else:
        _finder.interceptor = interceptor
    if _finder not in sys.meta_path:
        sys.meta_path.append(_finder)
    return _finder


def uninstall_hook() -> None:
    """Remove the finder from sys.meta_path."""
    global _finder
    if _finder is None:
        return
    while _finder in sys.meta_path:
        sys.meta_path.remove(_finder)
    _finder = None


def active_finder() -> OnDemandFinder | None:
    return _finder


@contextmanager
def suspend_hook() -> Iterator[None]:
    """Let imports fail natively while the interceptor drives the pipeline itself."""
    finder = _finder
    if finder is None:
        yield
        return
    finder._suspended += 1
    try:
        yield
    finally:
        finder._suspended -= 1
