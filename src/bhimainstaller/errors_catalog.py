"""Actionable error catalog for the BHIMA installer."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "not_root": {
        "what": "This installer must be run as root.",
        "next": "Re-run the command with `sudo`.",
    },
    "unsupported_platform": {
        "what": "Unsupported operating system: {name}.",
        "next": "Run the installer on a Debian or Ubuntu host.",
    },
    "missing_vpn_key": {
        "what": "The VPN step is enabled but no auth key was provided.",
        "next": "Pass `--vpn-auth-key`, set `TS_AUTH_KEY`, or disable the VPN step.",
    },
    "insecure_http": {
        "what": "{label} uses insecure HTTP.",
        "next": "Switch to HTTPS or use `--allow-insecure-http` only for trusted endpoints.",
    },
    "asset_not_found": {
        "what": "Could not find a `{pattern}` asset in the {repo} release.",
        "next": "Check that the release publishes a matching asset or adjust `--asset-suffix`.",
    },
    "step_failed": {
        "what": "Step `{step}` failed: {error}",
        "next": "Fix the reported problem and re-run the installer; completed steps are skipped.",
    },
    "unhealthy_services": {
        "what": "Services not running after installation: {services}.",
        "next": "Inspect `systemctl status <service>` and `journalctl -u <service>`.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
