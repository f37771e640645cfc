"""Placeholder templating for proxy and service unit configuration."""

from typing import Mapping, Optional

from bhimainstaller.constants import FILE_MODE


class TemplateService:
    """Fetches remote config templates and substitutes placeholder tokens."""

    def __init__(self, download_service, filesystem_service, logger):
        self.download_service = download_service
        self.filesystem_service = filesystem_service
        self.logger = logger

    @staticmethod
    def render(text: str, replacements: Mapping[str, str]) -> str:
        for token in sorted(replacements, key=len, reverse=True):
            text = text.replace(token, str(replacements[token]))
        return text

    def render_remote(
        self,
        url: str,
        destination: str,
        replacements: Mapping[str, str],
        mode: Optional[int] = FILE_MODE,
    ) -> str:
        template = self.download_service.fetch_text(url, f"Template {url.rsplit('/', 1)[-1]}")
        rendered = self.render(template, replacements)
        self.filesystem_service.write_file(destination, rendered, mode=mode)
        self.logger.debug("Rendered %s into %s", url, destination)
        return rendered
