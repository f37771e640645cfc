"""Download service with progress reporting and bounded retries."""

import os
import time
from typing import Any, Callable, Dict, Optional

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from bhimainstaller.errors import InstallerError, NetworkError


class DownloadService:
    """Handles HTTP fetches of metadata, templates, scripts and release archives.

    Every request is attempted ``retry_count + 1`` times, sleeping
    ``retry_backoff_seconds * attempt`` between attempts.
    """

    def __init__(
        self,
        validation_service,
        logger,
        console,
        requests_module,
        timeout: float = 60.0,
        retry_count: int = 2,
        retry_backoff_seconds: float = 2.0,
    ):
        self.validation_service = validation_service
        self.logger = logger
        self.console = console
        self.requests = requests_module
        self.timeout = timeout
        self.retry_count = max(0, retry_count)
        self.retry_backoff_seconds = retry_backoff_seconds

    def _with_retries(self, description: str, action: Callable[[], Any]) -> Any:
        max_attempts = self.retry_count + 1
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                return action()
            except self.requests.RequestException as exc:
                last_error = exc
                if attempt < max_attempts:
                    delay = self.retry_backoff_seconds * attempt
                    self.logger.warning(
                        "%s failed on attempt %s/%s. Retrying in %.1fs: %s",
                        description,
                        attempt,
                        max_attempts,
                        delay,
                        exc,
                    )
                    time.sleep(delay)

        raise NetworkError(f"{description} failed after {max_attempts} attempts: {last_error}")

    def fetch_json(self, url: str, description: str, headers: Optional[Dict[str, str]] = None) -> Any:
        self.validation_service.enforce_https_policy(url, description, self.logger, self.console)

        def _fetch():
            response = self.requests.get(url, headers=headers or {}, timeout=self.timeout)
            response.raise_for_status()
            return response.json()

        try:
            return self._with_retries(description, _fetch)
        except ValueError as exc:
            raise InstallerError(f"{description} returned invalid JSON: {exc}") from exc

    def fetch_text(self, url: str, description: str) -> str:
        self.validation_service.enforce_https_policy(url, description, self.logger, self.console)

        def _fetch():
            response = self.requests.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.text

        return self._with_retries(description, _fetch)

    def download_file(self, url: str, dest_path: str, description: str = "Downloading..."):
        self.logger.info("Downloading %s to %s", url, dest_path)
        self.validation_service.enforce_https_policy(url, description, self.logger, self.console)

        parent = os.path.dirname(dest_path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        def _stream():
            with self.requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                total_size = int(response.headers.get("Content-Length", 0))

                with Progress(
                    SpinnerColumn(),
                    TextColumn("[progress.description]{task.description}"),
                    BarColumn(),
                    TaskProgressColumn(),
                    "•",
                    TimeElapsedColumn(),
                    console=self.console,
                ) as progress:
                    task = progress.add_task(f"[cyan]{description}", total=total_size or None)
                    with open(dest_path, "wb") as file_obj:
                        for chunk in response.iter_content(chunk_size=8192):
                            if not chunk:
                                continue
                            file_obj.write(chunk)
                            progress.update(task, advance=len(chunk))

        try:
            self._with_retries(description, _stream)
        except NetworkError:
            self._remove_partial(dest_path)
            raise
        except OSError as exc:
            self._remove_partial(dest_path)
            raise InstallerError(f"Could not write {dest_path}: {exc}") from exc

    def _remove_partial(self, path: str):
        try:
            os.remove(path)
        except OSError:
            pass
