"""Destination strings for ``xcodebuild -destination``.

Every :class:`XcodePlatform` has exactly one resolver in ``_RESOLVERS``.
Adding a platform without a resolver fails at import time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import ConfigurationError, MissingDeviceSelectorError
from .platforms import XcodePlatform

logger = logging.getLogger("xcodeflow.destination")

# Universal macOS destination used when a build does not pin an architecture.
MACOS_UNIVERSAL_DESTINATION = "platform=macOS,arch=arm64,arch=x86_64"


@dataclass(frozen=True)
class DestinationSpec:
    """What to build for: a platform plus an optional device selector."""

    platform: XcodePlatform
    device_name: Optional[str] = None
    device_id: Optional[str] = None
    use_latest_os: bool = True
    arch: Optional[str] = None


def _resolve_macos(spec: DestinationSpec) -> str:
    return f"platform=macOS,arch={spec.arch}" if spec.arch else "platform=macOS"


def _resolve_device(spec: DestinationSpec) -> str:
    return generic_destination(spec.platform)


def _resolve_simulator(spec: DestinationSpec) -> str:
    platform = spec.platform.value
    # A UDID pins an exact runtime, so the OS policy does not apply.
    if spec.device_id:
        return f"platform={platform},id={spec.device_id}"
    if spec.device_name:
        suffix = ",OS=latest" if spec.use_latest_os else ""
        return f"platform={platform},name={spec.device_name}{suffix}"
    raise MissingDeviceSelectorError(platform)


_RESOLVERS: dict[XcodePlatform, Callable[[DestinationSpec], str]] = {
    XcodePlatform.MACOS: _resolve_macos,
    XcodePlatform.IOS: _resolve_device,
    XcodePlatform.WATCHOS: _resolve_device,
    XcodePlatform.TVOS: _resolve_device,
    XcodePlatform.VISIONOS: _resolve_device,
    XcodePlatform.IOS_SIMULATOR: _resolve_simulator,
    XcodePlatform.WATCHOS_SIMULATOR: _resolve_simulator,
    XcodePlatform.TVOS_SIMULATOR: _resolve_simulator,
    XcodePlatform.VISIONOS_SIMULATOR: _resolve_simulator,
}

_missing = [p.value for p in XcodePlatform if p not in _RESOLVERS]
if _missing:
    raise ConfigurationError(f"No destination resolver registered for: {', '.join(_missing)}")


def resolve_destination(spec: DestinationSpec) -> str:
    """Return the destination string for *spec*.

    Raises:
        MissingDeviceSelectorError: a simulator platform was given neither
            ``device_id`` nor ``device_name``.
    """
    return _RESOLVERS[spec.platform](spec)


def generic_destination(platform: XcodePlatform) -> str:
    """Any-device destination for *platform*, e.g. ``generic/platform=iOS Simulator``."""
    if platform is XcodePlatform.MACOS:
        return "generic/platform=macOS"
    return f"generic/platform={platform.value}"


def resolve_destination_or_generic(spec: DestinationSpec) -> str:
    """Resolve *spec*, falling back to the generic destination for its platform.

    Used by build actions, where any simulator of the family produces the
    same products. The fallback is logged.
    """
    try:
        return resolve_destination(spec)
    except MissingDeviceSelectorError:
        fallback = generic_destination(spec.platform)
        logger.warning(
            "No simulator name or id for %s; falling back to generic destination %s",
            spec.platform.value,
            fallback,
        )
        return fallback
