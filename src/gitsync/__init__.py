"""gitsync: fast-forward pulls and branch checkout over SSH or HTTPS."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("gitsync")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .client import GitClient  # noqa: F401
from .credentials import CredentialResolver  # noqa: F401
from .pull import PullResult  # noqa: F401
from .ssh import SshCredentialProfile  # noqa: F401

__all__ = [
    "CredentialResolver",
    "GitClient",
    "PullResult",
    "SshCredentialProfile",
    "__version__",
]
