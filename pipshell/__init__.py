"""pipshell: an interactive Python session that installs missing packages on demand.

Importing a package that is not installed fetches it into a private,
disposable workspace and completes the import, without leaving the session.

Components:
- classifier: what kind of reference a load request is
- workspace: the session's project root and dependency cache
- installer: bridge to pip / uv
- interceptor: classify, load, install, retry once
- history: persisted input history
"""

__version__ = "0.1.0"

from .classifier import InvalidReference, UnresolvableCaller, classify, find_caller_file
from .config import SessionConfig
from .history import HistoryManager
from .installer import InstallationFailed, InstallerBackend, InstallerBridge
from .interceptor import LoadInterceptor, OnDemandFinder, install_hook, uninstall_hook
from .schema import BestEffort, InstallOutcome, ModuleClassification, ModuleKind
from .session import Session
from .workspace import WorkspaceManager

__all__ = [
    # Core
    "classify",
    "find_caller_file",
    "LoadInterceptor",
    "OnDemandFinder",
    "install_hook",
    "uninstall_hook",
    "InstallerBridge",
    "InstallerBackend",
    "WorkspaceManager",
    # Session
    "Session",
    "SessionConfig",
    "HistoryManager",
    # Types
    "ModuleClassification",
    "ModuleKind",
    "InstallOutcome",
    "BestEffort",
    # Errors
    "InvalidReference",
    "UnresolvableCaller",
    "InstallationFailed",
]
