"""xcodeflow – xcodebuild and simctl orchestration with progress reporting and log capture"""

__version__ = "0.1.0"

from .build import (
    BuildAction,
    BuildParams,
    BuildResult,
    FailedTest,
    PlatformOptions,
    ProjectRef,
    clean,
    list_schemes,
    run_build,
    show_build_settings,
)
from .config import Settings, load_settings
from .destination import (
    DestinationSpec,
    generic_destination,
    resolve_destination,
    resolve_destination_or_generic,
)
from .errors import (
    BuildError,
    ConfigurationError,
    MissingDeviceSelectorError,
    SessionNotFoundError,
    SimulatorError,
    ToolSystemError,
    ValidationError,
    XcodeflowError,
)
from .executor import (
    CommandExecutor,
    CommandInvocation,
    CommandResult,
    build_command_line,
    execute,
    get_executor,
    quote_argument,
    set_executor,
)
from .log_capture import LogCaptureRegistry, LogSession, StartCaptureResult, StopCaptureResult
from .platforms import PlatformKind, XcodePlatform, coerce_platform
from .progress import (
    ProgressChannel,
    ProgressEstimator,
    ProgressReporter,
    ProgressStatus,
    ProgressTracker,
    ProgressUpdate,
    advance,
)
from .retention import RetentionCleaner

__all__ = [
    # Build
    "BuildAction",
    "BuildParams",
    "BuildResult",
    "FailedTest",
    "PlatformOptions",
    "ProjectRef",
    "clean",
    "list_schemes",
    "run_build",
    "show_build_settings",
    # Config
    "Settings",
    "load_settings",
    # Destination
    "DestinationSpec",
    "generic_destination",
    "resolve_destination",
    "resolve_destination_or_generic",
    # Errors
    "XcodeflowError",
    "ValidationError",
    "BuildError",
    "ToolSystemError",
    "ConfigurationError",
    "SimulatorError",
    "MissingDeviceSelectorError",
    "SessionNotFoundError",
    # Executor
    "CommandExecutor",
    "CommandInvocation",
    "CommandResult",
    "build_command_line",
    "execute",
    "get_executor",
    "quote_argument",
    "set_executor",
    # Log capture
    "LogCaptureRegistry",
    "LogSession",
    "StartCaptureResult",
    "StopCaptureResult",
    "RetentionCleaner",
    # Platforms
    "PlatformKind",
    "XcodePlatform",
    "coerce_platform",
    # Progress
    "ProgressChannel",
    "ProgressEstimator",
    "ProgressReporter",
    "ProgressStatus",
    "ProgressTracker",
    "ProgressUpdate",
    "advance",
]
