"""Dotenv file updates for the BHIMA application."""

import os
import stat
import tempfile
from typing import Dict, List, Optional

from bhimainstaller.errors import InstallerError


class EnvFileService:
    """Replaces keys in an environment file while preserving unrelated lines."""

    def __init__(self, logger):
        self.logger = logger

    @staticmethod
    def line_key(line: str) -> Optional[str]:
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            return None
        key = stripped.split("=", 1)[0].strip()
        if key.startswith("export "):
            key = key[len("export "):].strip()
        return key

    def update(self, path: str, values: Dict[str, str], mode: Optional[int] = None):
        """Rewrite ``path`` with ``values`` replacing any existing entries for the same keys.

        Without an explicit ``mode`` an existing file keeps its permissions and
        a new file is created owner-only, since it holds credentials.
        """
        lines: List[str] = []
        if os.path.exists(path):
            try:
                if mode is None:
                    mode = stat.S_IMODE(os.stat(path).st_mode)
                with open(path, "r", encoding="utf-8") as file_obj:
                    lines = file_obj.read().splitlines()
            except (OSError, UnicodeDecodeError) as exc:
                raise InstallerError(f"Could not read environment file '{path}': {exc}") from exc

        kept = [line for line in lines if self.line_key(line) not in values]
        removed = len(lines) - len(kept)
        if removed:
            self.logger.debug("Removed %s existing entries from %s", removed, path)

        kept.extend(f"{key}={value}" for key, value in values.items())
        content = "\n".join(kept) + "\n"

        directory = os.path.dirname(path) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".env-", dir=directory)
        except OSError as exc:
            raise InstallerError(f"Could not write environment file '{path}': {exc}") from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                file_obj.write(content)
            if mode is not None:
                os.chmod(temp_path, mode)
            os.replace(temp_path, path)
        except OSError as exc:
            raise InstallerError(f"Could not write environment file '{path}': {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass
