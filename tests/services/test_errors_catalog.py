import pytest

from bhimainstaller.errors_catalog import actionable_error


def test_actionable_error_formats_message_with_suggested_action():
    message = actionable_error("step_failed", step="install_database", error="apt-get exited with 100")

    assert "Step `install_database` failed: apt-get exited with 100" in message
    assert "Suggested action:" in message


def test_actionable_error_rejects_unknown_code():
    with pytest.raises(KeyError):
        actionable_error("does_not_exist")
