"""
bhimainstaller - single-host provisioning for BHIMA
"""

__version__ = "0.1.0"

from .core import BhimaInstaller
from .errors import InstallerError

__all__ = ["BhimaInstaller", "InstallerError"]
