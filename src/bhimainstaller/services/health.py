"""Service health checks against systemd."""

import time
from typing import Dict, Mapping

from bhimainstaller.models import ServiceHealth


class HealthChecker:
    """Queries the service manager for unit state. Never raises.

    One check issues at most two queries (state, then status text for a unit
    that is not active); both share a single ``timeout`` budget.
    """

    def __init__(self, command_runner, logger, timeout: float = 5.0):
        self.command_runner = command_runner
        self.logger = logger
        self.timeout = timeout

    def check_service(self, service_name: str) -> ServiceHealth:
        deadline = time.monotonic() + self.timeout
        try:
            result = self.command_runner.run(
                ["systemctl", "is-active", service_name],
                timeout=self.timeout,
            )
        except Exception as exc:
            self.logger.warning("Status query for %s failed: %s", service_name, exc)
            return ServiceHealth(name=service_name, running=False, diagnostic=str(exc))

        state = result.stdout.strip()
        if result.ok and state == "active":
            return ServiceHealth(name=service_name, running=True)

        # is-active exits 3 for inactive units; anything without a state line is a query error
        if result.timed_out or not state:
            diagnostic = result.stderr.strip() or f"systemctl exited with {result.exit_code}"
            return ServiceHealth(name=service_name, running=False, diagnostic=diagnostic)

        return ServiceHealth(
            name=service_name,
            running=False,
            diagnostic=self._status_text(service_name, deadline) or state,
        )

    def check_services(self, services: Mapping[str, str]) -> Dict[str, ServiceHealth]:
        return {role: self.check_service(unit) for role, unit in services.items()}

    def is_active(self, service_name: str) -> bool:
        return self.check_service(service_name).running

    def _status_text(self, service_name: str, deadline: float) -> str:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return ""
        try:
            result = self.command_runner.run(
                ["systemctl", "status", service_name, "--no-pager"],
                timeout=remaining,
            )
        except Exception as exc:
            self.logger.warning("Status text for %s unavailable: %s", service_name, exc)
            return ""
        return (result.stdout or result.stderr).strip()
