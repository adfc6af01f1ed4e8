"""Exception hierarchy for xcodeflow."""

from __future__ import annotations

from typing import Optional


class XcodeflowError(Exception):
    """Base class for all xcodeflow errors."""


class ValidationError(XcodeflowError):
    """Raised when request parameters are invalid or incomplete."""

    def __init__(self, message: str, param_name: Optional[str] = None):
        super().__init__(message)
        self.param_name = param_name


class BuildError(XcodeflowError):
    """Raised when a build operation fails and the caller wants an exception."""

    def __init__(self, message: str, build_output: Optional[str] = None):
        super().__init__(message)
        self.build_output = build_output


class ToolSystemError(XcodeflowError):
    """File access, permission and other host-level failures."""

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.original_error = original_error


class ConfigurationError(XcodeflowError):
    """Raised for invalid or inconsistent configuration."""


class SimulatorError(XcodeflowError):
    """Raised for simulator specific failures."""

    def __init__(
        self,
        message: str,
        simulator_name: Optional[str] = None,
        simulator_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.simulator_name = simulator_name
        self.simulator_id = simulator_id


class MissingDeviceSelectorError(ValidationError, SimulatorError):
    """A simulator platform was requested without a device name or id."""

    def __init__(self, platform: str):
        XcodeflowError.__init__(
            self, f"Simulator name or ID is required for specific {platform} operations"
        )
        self.param_name = "device"
        self.simulator_name = None
        self.simulator_id = None
        self.platform = platform


class SessionNotFoundError(XcodeflowError):
    """Raised when stopping a log capture session that is not registered."""

    def __init__(self, session_id: str):
        super().__init__(f"Log capture session not found: {session_id}")
        self.session_id = session_id
