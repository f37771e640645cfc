"""Release discovery and retrieval for the BHIMA installer."""

import os
from typing import Any, Dict, List, Optional

from bhimainstaller.constants import DEFAULT_ASSET_SUFFIX, GITHUB_API_URL
from bhimainstaller.errors import AssetNotFoundError, InstallerError
from bhimainstaller.errors_catalog import actionable_error


class ReleaseFetcher:
    """Finds the downloadable asset of a GitHub release, then downloads and unpacks it."""

    API_HEADERS = {"Accept": "application/vnd.github+json"}

    def __init__(self, download_service, archive_service, logger, api_url: str = GITHUB_API_URL):
        self.download_service = download_service
        self.archive_service = archive_service
        self.logger = logger
        self.api_url = api_url.rstrip("/")

    def release_metadata_url(self, repo: str, tag: Optional[str] = None) -> str:
        if tag:
            return f"{self.api_url}/repos/{repo}/releases/tags/{tag}"
        return f"{self.api_url}/repos/{repo}/releases/latest"

    def fetch_latest_release_asset(
        self,
        repo: str,
        asset_pattern: str = DEFAULT_ASSET_SUFFIX,
        tag: Optional[str] = None,
    ) -> str:
        metadata = self.download_service.fetch_json(
            self.release_metadata_url(repo, tag),
            "Release metadata",
            headers=self.API_HEADERS,
        )
        if not isinstance(metadata, dict):
            raise InstallerError(f"Unexpected release metadata for {repo}: expected a JSON object.")

        release_name = metadata.get("tag_name") or metadata.get("name") or "latest"
        self.logger.info("Found release %s of %s", release_name, repo)

        matches = self.select_assets(metadata.get("assets") or [], asset_pattern)
        if not matches:
            raise AssetNotFoundError(
                actionable_error("asset_not_found", pattern=asset_pattern, repo=repo)
            )

        if len(matches) > 1:
            self.logger.warning(
                "Release %s has %s assets matching `%s`; using the first: %s",
                release_name,
                len(matches),
                asset_pattern,
                matches[0],
            )
        return matches[0]

    @staticmethod
    def select_assets(assets: List[Dict[str, Any]], asset_pattern: str) -> List[str]:
        matches = []
        for asset in assets:
            if not isinstance(asset, dict):
                continue
            url = asset.get("browser_download_url") or ""
            name = asset.get("name") or ""
            if not url:
                continue
            if url.endswith(asset_pattern) or name.endswith(asset_pattern):
                matches.append(url)
        return matches

    def download(self, url: str, destination_path: str):
        self.download_service.download_file(url, destination_path, "Downloading release...")

    def extract(self, archive_path: str, destination_dir: str):
        self.logger.info("Extracting %s into %s", archive_path, destination_dir)
        self.archive_service.safe_extract_tar(archive_path, destination_dir)

    def install_release(
        self,
        repo: str,
        destination_dir: str,
        asset_pattern: str = DEFAULT_ASSET_SUFFIX,
        tag: Optional[str] = None,
    ) -> str:
        url = self.fetch_latest_release_asset(repo, asset_pattern, tag=tag)
        archive_path = os.path.join(destination_dir, f"bhima-latest{asset_pattern}")
        self.download(url, archive_path)
        try:
            self.extract(archive_path, destination_dir)
        finally:
            if os.path.exists(archive_path):
                os.remove(archive_path)
        return url
