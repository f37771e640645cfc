"""Credential generation for the BHIMA installer."""

import secrets

from bhimainstaller.errors import ConfigurationError


class SecretsGenerator:
    """Produces high-entropy hex strings from the OS CSPRNG."""

    def generate(self, byte_length: int) -> str:
        if byte_length <= 0:
            raise ConfigurationError("Secret length must be a positive number of bytes.")
        return secrets.token_hex(byte_length)
