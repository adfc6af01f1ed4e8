"""xcodebuild actions: build, test, clean, show build settings, list schemes.

These functions assemble an argument list, hand it to the executor and
interpret the result. They never raise for a failed build; failures come
back as ``BuildResult(success=False)``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .destination import (
    MACOS_UNIVERSAL_DESTINATION,
    DestinationSpec,
    resolve_destination,
    resolve_destination_or_generic,
)
from .errors import BuildError, MissingDeviceSelectorError, ValidationError
from .executor import CommandExecutor, CommandInvocation, CommandResult, get_executor
from .platforms import PlatformKind, XcodePlatform
from .progress import ProgressSink

logger = logging.getLogger("xcodeflow.build")

_WARNING_RE = re.compile(r"\[warning\]: (.*)")
_COMPILER_WARNING_RE = re.compile(r"^(.+?:\d+(?::\d+)?): warning: (.*)$", re.MULTILINE)
_TEST_FAILURE_RE = re.compile(r"Test Case '(.*)' failed \((.*)\)")
_SCHEMES_RE = re.compile(r"Schemes:([\s\S]*?)(?=\n\n|$)")


class BuildAction(str, Enum):
    BUILD = "build"
    TEST = "test"
    CLEAN = "clean"


@dataclass(frozen=True)
class ProjectRef:
    """Either an .xcworkspace or an .xcodeproj, never both."""

    workspace_path: Optional[str] = None
    project_path: Optional[str] = None

    def __post_init__(self) -> None:
        if self.workspace_path and self.project_path:
            raise ValidationError(
                "workspace_path and project_path are mutually exclusive",
                param_name="workspace_path",
            )

    @property
    def is_workspace(self) -> bool:
        return bool(self.workspace_path)

    def to_args(self) -> list[str]:
        if self.workspace_path:
            return ["-workspace", self.workspace_path]
        if self.project_path:
            return ["-project", self.project_path]
        return []


@dataclass(frozen=True)
class BuildParams:
    project: ProjectRef
    scheme: str
    configuration: str = "Debug"
    derived_data_path: Optional[str] = None
    extra_args: tuple[str, ...] = ()


@dataclass(frozen=True)
class PlatformOptions:
    platform: XcodePlatform
    device_name: Optional[str] = None
    device_id: Optional[str] = None
    use_latest_os: bool = True
    arch: Optional[str] = None
    label: str = ""

    @property
    def log_prefix(self) -> str:
        return self.label or self.platform.value

    def destination_spec(self) -> DestinationSpec:
        return DestinationSpec(
            platform=self.platform,
            device_name=self.device_name,
            device_id=self.device_id,
            use_latest_os=self.use_latest_os,
            arch=self.arch,
        )


@dataclass
class FailedTest:
    test_case: str
    reason: str


@dataclass
class BuildResult:
    """Outcome of an xcodebuild action, ready to be shown to a caller."""

    success: bool
    action: str
    scheme: str = ""
    platform: str = ""
    message: str = ""
    destination: str = ""
    warnings: list[str] = field(default_factory=list)
    test_failures: list[FailedTest] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)
    output: str = ""
    error: str = ""
    command_line: str = ""
    elapsed_seconds: float = 0.0
    operation_id: Optional[str] = None

    def raise_for_status(self) -> None:
        """Raise :class:`BuildError` carrying the tool output when the action failed."""
        if not self.success:
            raise BuildError(self.message, build_output=self.output)


def extract_warnings(output: str) -> list[str]:
    warnings = [m.group(1) for m in _WARNING_RE.finditer(output)]
    for m in _COMPILER_WARNING_RE.finditer(output):
        warnings.append(f"{m.group(1)}: {m.group(2)}")
    return warnings


def parse_test_failures(output: str) -> list[FailedTest]:
    failures: list[FailedTest] = []
    for line in output.splitlines():
        m = _TEST_FAILURE_RE.search(line)
        if m:
            failures.append(FailedTest(test_case=m.group(1), reason=m.group(2)))
    return failures


def parse_schemes(output: str) -> list[str]:
    m = _SCHEMES_RE.search(output)
    if not m:
        return []
    return [line.strip() for line in m.group(1).strip().splitlines() if line.strip()]


def build_destination(options: PlatformOptions, action: BuildAction) -> str:
    """Destination for *action*.

    Builds fall back to the generic simulator destination when no device is
    selected; tests need a concrete device and raise instead.
    """
    if options.platform is XcodePlatform.MACOS and not options.arch:
        return MACOS_UNIVERSAL_DESTINATION
    spec = options.destination_spec()
    if action is BuildAction.BUILD:
        return resolve_destination_or_generic(spec)
    return resolve_destination(spec)


def build_args(
    params: BuildParams,
    action: BuildAction,
    *,
    destination: Optional[str] = None,
    xcodebuild: str = "xcodebuild",
) -> list[str]:
    args = [xcodebuild, *params.project.to_args(), "-scheme", params.scheme]
    args += ["-configuration", params.configuration]
    if destination:
        args += ["-destination", destination]
    if params.derived_data_path:
        args += ["-derivedDataPath", params.derived_data_path]
    args += list(params.extra_args)
    args.append(action.value)
    return args


def next_steps_for(params: BuildParams, options: PlatformOptions) -> list[str]:
    kind = "workspace" if params.project.is_workspace else "project"
    platform = options.platform
    if platform is XcodePlatform.MACOS:
        return [
            f"Get App Path: get_macos_app_path_{kind}",
            "Get Bundle ID: get_macos_bundle_id",
            "Launch App: launch_macos_app",
        ]
    if platform.kind is PlatformKind.DEVICE:
        return [
            f"Get App Path: get_{platform.device_family.lower()}_device_app_path_{kind}",
            "Get Bundle ID: get_bundle_id",
        ]
    selector = "id" if options.device_id else "name"
    return [
        f"Get App Path: get_simulator_app_path_by_{selector}_{kind}",
        "Boot Simulator",
        "Install & Launch App",
    ]


async def run_build(
    params: BuildParams,
    options: PlatformOptions,
    action: BuildAction = BuildAction.BUILD,
    *,
    executor: Optional[CommandExecutor] = None,
    progress_sink: Optional[ProgressSink] = None,
    xcodebuild: str = "xcodebuild",
) -> BuildResult:
    """Run ``xcodebuild <action>`` for *params* on the platform in *options*."""
    prefix = options.log_prefix
    logger.info("Starting %s %s for scheme %s", prefix, action.value, params.scheme)

    try:
        destination = build_destination(options, action)
    except MissingDeviceSelectorError as e:
        logger.error("%s %s: %s", prefix, action.value, e)
        return BuildResult(
            success=False,
            action=action.value,
            scheme=params.scheme,
            platform=options.platform.value,
            message=f"For {options.platform.value} platform, either device_id or device_name must be provided",
            error=str(e),
        )

    invocation = CommandInvocation(
        args=build_args(params, action, destination=destination, xcodebuild=xcodebuild),
        label=f"{prefix} {action.value.capitalize()}",
    )
    result = await (executor or get_executor()).execute(invocation, progress_sink)
    return _interpret(result, params, options, action, destination)


def _interpret(
    result: CommandResult,
    params: BuildParams,
    options: PlatformOptions,
    action: BuildAction,
    destination: str,
) -> BuildResult:
    prefix = options.log_prefix
    report = BuildResult(
        success=result.success,
        action=action.value,
        scheme=params.scheme,
        platform=options.platform.value,
        destination=destination,
        warnings=extract_warnings(result.output),
        output=result.output,
        error=result.error if not result.success else "",
        command_line=result.command_line,
        elapsed_seconds=result.elapsed_seconds,
        operation_id=result.operation_id,
    )

    if action is BuildAction.TEST:
        report.test_failures = parse_test_failures(result.output)
        if report.test_failures:
            report.message = f"{len(report.test_failures)} test(s) failed"
        elif result.success:
            report.message = "All tests passed"
        else:
            report.message = f"{prefix} test run failed for scheme {params.scheme}. Error: {result.error}"
        return report

    if not result.success:
        logger.error("%s %s failed: %s", prefix, action.value, result.error)
        report.message = f"{prefix} {action.value} failed for scheme {params.scheme}. Error: {result.error}"
        return report

    logger.info("%s %s succeeded.", prefix, action.value)
    report.message = f"{prefix} {action.value} succeeded for scheme {params.scheme}."
    if action is BuildAction.BUILD:
        report.next_steps = next_steps_for(params, options)
    return report


async def clean(
    project: ProjectRef,
    *,
    scheme: Optional[str] = None,
    configuration: Optional[str] = None,
    derived_data_path: Optional[str] = None,
    extra_args: tuple[str, ...] = (),
    executor: Optional[CommandExecutor] = None,
    xcodebuild: str = "xcodebuild",
) -> BuildResult:
    """``xcodebuild clean``; scheme and configuration are optional here."""
    if not project.to_args():
        logger.warning(
            "Neither workspace_path nor project_path was provided; "
            "xcodebuild will look for a project in the current directory."
        )
    args = [xcodebuild, "clean", *project.to_args()]
    if scheme:
        args += ["-scheme", scheme]
    if configuration:
        args += ["-configuration", configuration]
    if derived_data_path:
        args += ["-derivedDataPath", derived_data_path]
    args += list(extra_args)

    result = await (executor or get_executor()).execute(CommandInvocation(args=args, label="Clean"))
    if result.success:
        message = f"Clean operation successful: {result.output}"
    else:
        message = f"Clean operation failed: {result.error}"
    return BuildResult(
        success=result.success,
        action=BuildAction.CLEAN.value,
        scheme=scheme or "",
        message=message,
        output=result.output,
        error=result.error if not result.success else "",
        command_line=result.command_line,
        elapsed_seconds=result.elapsed_seconds,
    )


async def show_build_settings(
    project: ProjectRef,
    scheme: str,
    *,
    executor: Optional[CommandExecutor] = None,
    xcodebuild: str = "xcodebuild",
) -> CommandResult:
    logger.info("Showing build settings for scheme %s", scheme)
    args = [xcodebuild, "-showBuildSettings", *project.to_args(), "-scheme", scheme]
    return await (executor or get_executor()).execute(
        CommandInvocation(args=args, label="Show Build Settings")
    )


async def list_schemes(
    project: ProjectRef,
    *,
    executor: Optional[CommandExecutor] = None,
    xcodebuild: str = "xcodebuild",
) -> tuple[CommandResult, list[str]]:
    """Run ``xcodebuild -list`` and return the result plus the parsed scheme names."""
    logger.info("Listing schemes")
    args = [xcodebuild, "-list", *project.to_args()]
    result = await (executor or get_executor()).execute(CommandInvocation(args=args, label="List Schemes"))
    if not result.success:
        return result, []
    return result, parse_schemes(result.output)
