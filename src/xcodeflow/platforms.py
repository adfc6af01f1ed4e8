"""Apple build platforms understood by xcodebuild.

Platforms fall into three kinds:
- desktop: macOS, built and run on the host
- device: physical hardware, always targeted generically at build time
- simulator: needs a concrete simulator selected by name or UDID
"""

from __future__ import annotations

from enum import Enum


class PlatformKind(str, Enum):
    """How a platform is targeted by xcodebuild."""

    DESKTOP = "desktop"
    DEVICE = "device"
    SIMULATOR = "simulator"


class XcodePlatform(str, Enum):
    """Build platform as spelled in xcodebuild destination strings."""

    MACOS = "macOS"
    IOS = "iOS"
    IOS_SIMULATOR = "iOS Simulator"
    WATCHOS = "watchOS"
    WATCHOS_SIMULATOR = "watchOS Simulator"
    TVOS = "tvOS"
    TVOS_SIMULATOR = "tvOS Simulator"
    VISIONOS = "visionOS"
    VISIONOS_SIMULATOR = "visionOS Simulator"

    @property
    def kind(self) -> PlatformKind:
        if self is XcodePlatform.MACOS:
            return PlatformKind.DESKTOP
        if self.value.endswith(" Simulator"):
            return PlatformKind.SIMULATOR
        return PlatformKind.DEVICE

    @property
    def is_simulator(self) -> bool:
        return self.kind is PlatformKind.SIMULATOR

    @property
    def device_family(self) -> str:
        """OS family name without the simulator suffix (``iOS`` for ``iOS Simulator``)."""
        return self.value.removesuffix(" Simulator")


SIMULATOR_PLATFORMS: tuple[XcodePlatform, ...] = tuple(p for p in XcodePlatform if p.is_simulator)


def coerce_platform(value: "XcodePlatform | str") -> XcodePlatform:
    """Accept enum members, their values, or loose spellings like ``ios-simulator``."""
    if isinstance(value, XcodePlatform):
        return value
    raw = str(value or "").strip()
    try:
        return XcodePlatform(raw)
    except ValueError:
        pass
    key = raw.lower().replace("-", " ").replace("_", " ")
    for p in XcodePlatform:
        if p.value.lower() == key or p.name.lower().replace("_", " ") == key:
            return p
    raise ValueError(f"Unknown platform: {value!r}")

