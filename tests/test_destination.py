"""Tests for xcodeflow.destination."""

import logging

import pytest

from xcodeflow.destination import (
    _RESOLVERS,
    DestinationSpec,
    generic_destination,
    resolve_destination,
    resolve_destination_or_generic,
)
from xcodeflow.errors import MissingDeviceSelectorError, SimulatorError, ValidationError
from xcodeflow.platforms import SIMULATOR_PLATFORMS, PlatformKind, XcodePlatform, coerce_platform


# ---------------------------------------------------------------------------
# Simulator platforms
# ---------------------------------------------------------------------------

def test_named_simulator_with_latest_os() -> None:
    spec = DestinationSpec(XcodePlatform.IOS_SIMULATOR, device_name="iPhone 15")
    assert resolve_destination(spec) == "platform=iOS Simulator,name=iPhone 15,OS=latest"


def test_named_simulator_without_latest_os() -> None:
    spec = DestinationSpec(XcodePlatform.IOS_SIMULATOR, device_name="iPhone 15", use_latest_os=False)
    assert resolve_destination(spec) == "platform=iOS Simulator,name=iPhone 15"


def test_device_id_wins_over_name_and_ignores_os_policy() -> None:
    spec = DestinationSpec(
        XcodePlatform.WATCHOS_SIMULATOR,
        device_name="Apple Watch",
        device_id="ABC-123",
        use_latest_os=True,
    )
    assert resolve_destination(spec) == "platform=watchOS Simulator,id=ABC-123"


@pytest.mark.parametrize("platform", SIMULATOR_PLATFORMS)
def test_simulator_without_selector_raises(platform) -> None:
    with pytest.raises(MissingDeviceSelectorError) as exc_info:
        resolve_destination(DestinationSpec(platform))
    assert platform.value in str(exc_info.value)


def test_missing_selector_is_validation_and_simulator_error() -> None:
    with pytest.raises(ValidationError):
        resolve_destination(DestinationSpec(XcodePlatform.TVOS_SIMULATOR))
    with pytest.raises(SimulatorError):
        resolve_destination(DestinationSpec(XcodePlatform.TVOS_SIMULATOR))


# ---------------------------------------------------------------------------
# macOS and device platforms
# ---------------------------------------------------------------------------

def test_macos_plain_and_with_arch() -> None:
    assert resolve_destination(DestinationSpec(XcodePlatform.MACOS)) == "platform=macOS"
    assert resolve_destination(DestinationSpec(XcodePlatform.MACOS, arch="arm64")) == "platform=macOS,arch=arm64"


@pytest.mark.parametrize(
    "platform,expected",
    [
        (XcodePlatform.IOS, "generic/platform=iOS"),
        (XcodePlatform.WATCHOS, "generic/platform=watchOS"),
        (XcodePlatform.TVOS, "generic/platform=tvOS"),
        (XcodePlatform.VISIONOS, "generic/platform=visionOS"),
    ],
)
def test_device_platforms_are_generic(platform, expected) -> None:
    # Device selectors are irrelevant for physical-device builds.
    assert resolve_destination(DestinationSpec(platform, device_name="ignored")) == expected


def test_every_platform_has_a_resolver() -> None:
    assert set(_RESOLVERS) == set(XcodePlatform)


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------

def test_generic_destination_for_simulator() -> None:
    assert generic_destination(XcodePlatform.IOS_SIMULATOR) == "generic/platform=iOS Simulator"
    assert generic_destination(XcodePlatform.MACOS) == "generic/platform=macOS"


def test_fallback_logs_a_warning(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="xcodeflow.destination"):
        dest = resolve_destination_or_generic(DestinationSpec(XcodePlatform.VISIONOS_SIMULATOR))
    assert dest == "generic/platform=visionOS Simulator"
    assert "falling back" in caplog.text


def test_fallback_not_used_when_selector_given() -> None:
    spec = DestinationSpec(XcodePlatform.IOS_SIMULATOR, device_id="X")
    assert resolve_destination_or_generic(spec) == "platform=iOS Simulator,id=X"


# ---------------------------------------------------------------------------
# Platforms
# ---------------------------------------------------------------------------

def test_platform_kinds() -> None:
    assert XcodePlatform.MACOS.kind is PlatformKind.DESKTOP
    assert XcodePlatform.IOS.kind is PlatformKind.DEVICE
    assert XcodePlatform.IOS_SIMULATOR.kind is PlatformKind.SIMULATOR
    assert XcodePlatform.VISIONOS_SIMULATOR.device_family == "visionOS"
    assert len(SIMULATOR_PLATFORMS) == 4


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("iOS Simulator", XcodePlatform.IOS_SIMULATOR),
        ("ios-simulator", XcodePlatform.IOS_SIMULATOR),
        ("IOS_SIMULATOR", XcodePlatform.IOS_SIMULATOR),
        ("macos", XcodePlatform.MACOS),
        (XcodePlatform.TVOS, XcodePlatform.TVOS),
    ],
)
def test_coerce_platform(raw, expected) -> None:
    assert coerce_platform(raw) is expected


def test_coerce_platform_unknown() -> None:
    with pytest.raises(ValueError):
        coerce_platform("android")
