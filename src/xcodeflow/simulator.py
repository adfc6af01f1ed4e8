"""Simulator control through ``xcrun simctl``."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from .errors import SimulatorError
from .executor import CommandExecutor, CommandInvocation, CommandResult, get_executor
from .log_capture import LogCaptureRegistry, StartCaptureResult

logger = logging.getLogger("xcodeflow.simulator")


@dataclass
class SimulatorDevice:
    name: str
    udid: str
    runtime: str
    state: str = "Shutdown"
    is_available: bool = True

    @property
    def is_booted(self) -> bool:
        return self.state == "Booted"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "udid": self.udid,
            "runtime": self.runtime,
            "state": self.state,
            "is_available": self.is_available,
        }


def parse_simulator_list(raw: str) -> list[SimulatorDevice]:
    """Parse ``simctl list devices --json`` output into available devices."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise SimulatorError(f"Could not parse simctl output: {e}") from e

    devices: list[SimulatorDevice] = []
    for runtime, entries in (data.get("devices") or {}).items():
        for entry in entries or []:
            if not entry.get("isAvailable", True):
                continue
            devices.append(
                SimulatorDevice(
                    name=entry.get("name", ""),
                    udid=entry.get("udid", ""),
                    runtime=runtime,
                    state=entry.get("state", "Shutdown"),
                    is_available=True,
                )
            )
    return devices


async def _simctl(
    label: str,
    *args: str,
    executor: Optional[CommandExecutor] = None,
    xcrun: str = "xcrun",
) -> CommandResult:
    invocation = CommandInvocation(args=(xcrun, "simctl", *args), label=label)
    return await (executor or get_executor()).execute(invocation)


async def list_simulators(
    *,
    executor: Optional[CommandExecutor] = None,
    xcrun: str = "xcrun",
) -> list[SimulatorDevice]:
    """Return the available simulators.

    Raises:
        SimulatorError: simctl failed or printed something that is not JSON.
    """
    logger.info("Starting xcrun simctl list devices request")
    result = await _simctl(
        "List Simulators", "list", "devices", "available", "--json", executor=executor, xcrun=xcrun
    )
    if not result.success:
        raise SimulatorError(f"Failed to list simulators: {result.error}")
    return parse_simulator_list(result.output)


async def boot_simulator(
    udid: str,
    *,
    executor: Optional[CommandExecutor] = None,
    xcrun: str = "xcrun",
) -> CommandResult:
    logger.info("Starting xcrun simctl boot request for simulator %s", udid)
    return await _simctl("Boot Simulator", "boot", udid, executor=executor, xcrun=xcrun)


async def install_app(
    udid: str,
    app_path: str,
    *,
    executor: Optional[CommandExecutor] = None,
    xcrun: str = "xcrun",
) -> CommandResult:
    logger.info("Starting xcrun simctl install request for simulator %s", udid)
    return await _simctl("Install App", "install", udid, app_path, executor=executor, xcrun=xcrun)


async def is_app_installed(
    udid: str,
    bundle_id: str,
    *,
    executor: Optional[CommandExecutor] = None,
    xcrun: str = "xcrun",
) -> bool:
    result = await _simctl(
        "Check App Installed", "get_app_container", udid, bundle_id, "app", executor=executor, xcrun=xcrun
    )
    return result.success


async def launch_app(
    udid: str,
    bundle_id: str,
    *,
    executor: Optional[CommandExecutor] = None,
    xcrun: str = "xcrun",
) -> CommandResult:
    """Launch *bundle_id* on *udid*; the app has to be installed first."""
    logger.info("Starting xcrun simctl launch request for simulator %s", udid)
    if not await is_app_installed(udid, bundle_id, executor=executor, xcrun=xcrun):
        return CommandResult(
            success=False,
            error=(
                "App is not installed on the simulator. Install it before launching.\n\n"
                "Workflow: build -> install -> launch."
            ),
        )
    return await _simctl("Launch App", "launch", udid, bundle_id, executor=executor, xcrun=xcrun)


async def launch_app_with_logs(
    registry: LogCaptureRegistry,
    udid: str,
    bundle_id: str,
) -> StartCaptureResult:
    """Relaunch the app attached to the console and start capturing its logs."""
    logger.info("Starting app launch with logs for simulator %s", udid)
    return await registry.start(udid, bundle_id, capture_console=True)


async def open_simulator_app(*, executor: Optional[CommandExecutor] = None) -> CommandResult:
    return await (executor or get_executor()).execute(
        CommandInvocation(args=("open", "-a", "Simulator"), label="Open Simulator")
    )
