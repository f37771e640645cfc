import string

import pytest

from bhimainstaller.errors import ConfigurationError
from bhimainstaller.services.secrets import SecretsGenerator


@pytest.mark.parametrize("byte_length", [1, 16, 64])
def test_generate_returns_lowercase_hex_of_double_length(byte_length):
    secret = SecretsGenerator().generate(byte_length)

    assert len(secret) == 2 * byte_length
    assert set(secret) <= set(string.hexdigits.lower())


def test_generate_does_not_repeat_values():
    generator = SecretsGenerator()

    values = {generator.generate(16) for _ in range(10000)}

    assert len(values) == 10000


def test_generate_rejects_non_positive_length():
    with pytest.raises(ConfigurationError):
        SecretsGenerator().generate(0)
