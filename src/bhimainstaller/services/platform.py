"""Host privilege and distribution checks."""

import os
import shlex
from typing import Dict

from bhimainstaller.constants import SUPPORTED_PLATFORMS
from bhimainstaller.errors import PrivilegeError, UnsupportedPlatformError
from bhimainstaller.errors_catalog import actionable_error
from bhimainstaller.models import PlatformInfo


class PlatformService:
    def __init__(self, logger, os_release_path: str = "/etc/os-release"):
        self.logger = logger
        self.os_release_path = os_release_path

    def ensure_privileged(self):
        geteuid = getattr(os, "geteuid", None)
        if geteuid is None or geteuid() != 0:
            raise PrivilegeError(actionable_error("not_root"))

    def read_os_release(self) -> Dict[str, str]:
        values: Dict[str, str] = {}
        try:
            with open(self.os_release_path, "r", encoding="utf-8") as file_obj:
                for line in file_obj:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    key, raw_value = line.split("=", 1)
                    parsed = shlex.split(raw_value)
                    values[key] = parsed[0] if parsed else ""
        except (OSError, ValueError) as exc:
            raise UnsupportedPlatformError(
                actionable_error("unsupported_platform", name=f"unreadable {self.os_release_path} ({exc})")
            ) from exc
        return values

    def detect(self) -> PlatformInfo:
        values = self.read_os_release()
        candidates = [values.get("ID", "").lower()] + values.get("ID_LIKE", "").lower().split()
        family = next((name for name in candidates if name in SUPPORTED_PLATFORMS), None)
        display_name = values.get("PRETTY_NAME") or values.get("NAME") or values.get("ID") or "unknown"

        if family is None:
            raise UnsupportedPlatformError(actionable_error("unsupported_platform", name=display_name))

        if family == "ubuntu":
            codename = values.get("UBUNTU_CODENAME") or values.get("VERSION_CODENAME")
        else:
            codename = values.get("VERSION_CODENAME")
        if not codename:
            raise UnsupportedPlatformError(
                actionable_error("unsupported_platform", name=f"{display_name} (no release codename)")
            )

        self.logger.info("Detected %s %s.", family, codename)
        return PlatformInfo(family=family, codename=codename)
