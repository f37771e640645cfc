"""Filesystem helpers for the BHIMA installer."""

import logging
import os
import shutil
import stat
import tempfile
from typing import Optional

from rich.console import Console

from bhimainstaller.errors import InstallerError


class FileSystemService:
    """Encapsulates file and directory side effects on the target host."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def ensure_dir(self, path: str, mode: Optional[int] = None):
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as exc:
            raise InstallerError(f"Could not create directory {path}: {exc}") from exc
        if mode is not None:
            self.set_permissions(path, mode)

    def write_file(self, path: str, content: str, mode: Optional[int] = None):
        """Atomically replace ``path`` with ``content``.

        The mode is applied to the temporary file before the rename, so a
        restricted file is never visible with looser permissions.
        """
        directory = os.path.dirname(path) or "."
        self.ensure_dir(directory)

        fd, temp_path = tempfile.mkstemp(prefix=".bhima-", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(content)
            if mode is not None:
                os.chmod(temp_path, mode)
            os.replace(temp_path, path)
        except OSError as exc:
            raise InstallerError(f"Could not write {path}: {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass
        self.logger.debug("Wrote %s", path)

    def read_text(self, path: str) -> str:
        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                return file_obj.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise InstallerError(f"Could not read {path}: {exc}") from exc

    def file_mode(self, path: str) -> Optional[int]:
        try:
            return stat.S_IMODE(os.stat(path).st_mode)
        except OSError:
            return None

    def set_permissions(self, path: str, mode: int):
        try:
            os.chmod(path, mode)
        except OSError as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def ensure_symlink(self, target: str, link_path: str):
        if os.path.islink(link_path) and os.readlink(link_path) == target:
            return
        try:
            if os.path.lexists(link_path):
                os.remove(link_path)
            os.symlink(target, link_path)
        except OSError as exc:
            raise InstallerError(f"Could not link {link_path} -> {target}: {exc}") from exc

    def remove_file(self, path: str):
        if not os.path.lexists(path):
            return
        try:
            os.remove(path)
            self.logger.debug("Removed file: %s", path)
        except OSError as exc:
            raise InstallerError(f"Could not remove {path}: {exc}") from exc

    def copy_tree_contents(self, source_dir: str, destination_dir: str):
        if not os.path.isdir(source_dir):
            raise InstallerError(f"Expected directory not found: {source_dir}")

        try:
            for item in os.listdir(source_dir):
                src_path = os.path.join(source_dir, item)
                dst_path = os.path.join(destination_dir, item)
                if os.path.isdir(src_path) and not os.path.islink(src_path):
                    shutil.copytree(src_path, dst_path, dirs_exist_ok=True)
                else:
                    shutil.copy2(src_path, dst_path)
        except (OSError, shutil.Error) as exc:
            raise InstallerError(f"Failed to copy {source_dir} into {destination_dir}: {exc}") from exc
