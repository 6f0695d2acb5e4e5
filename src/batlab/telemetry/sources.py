"""Battery telemetry sources for Linux and the BSD family."""

import logging
import subprocess
import sys
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..models import BatteryCapacity, BatteryReading, SourceTag
from .parsers import (
    find_upower_battery,
    parse_acpiconf,
    parse_number,
    parse_upower,
)

logger = logging.getLogger(__name__)

_PERMISSION_MARKERS = ("permission denied", "operation not permitted")


class SourceUnavailable(Exception):
    """A battery source could not produce a reading this tick."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class BatteryCharging(SourceUnavailable):
    """Battery is charging or full; its readings are not discharge data."""

    def __init__(self, source: str, state: str):
        super().__init__(source, f"battery state is '{state}'")
        self.state = state


class RateUnavailable(SourceUnavailable):
    """Percentage was read but no usable discharge rate."""

    def __init__(self, source: str, percentage: float, reason: str = "no discharge rate"):
        super().__init__(source, reason)
        self.percentage = percentage


class SourcePermissionDenied(SourceUnavailable):
    """Source requires elevated privilege."""

    def __init__(self, source: str, remediation: str):
        super().__init__(source, "permission denied")
        self.remediation = remediation


class OSFamily(str, Enum):
    LINUX = "linux"
    BSD = "bsd"
    UNSUPPORTED = "unsupported"


def detect_os_family(platform: Optional[str] = None) -> OSFamily:
    """Map sys.platform to the OS family whose sources apply."""
    name = (platform or sys.platform).lower()
    if name.startswith("linux"):
        return OSFamily.LINUX
    if name.startswith(("freebsd", "openbsd", "netbsd", "dragonfly")):
        return OSFamily.BSD
    return OSFamily.UNSUPPORTED


CommandRunner = Callable[[Sequence[str]], str]


def run_command(args: Sequence[str], timeout: float = 5.0) -> str:
    """
    Run a short-lived command and return its stdout.

    Raises:
        SourcePermissionDenied: If the command failed for lack of privilege
        SourceUnavailable: If the command is missing, failed, or timed out
    """
    name = args[0]
    try:
        result = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
        )
        return result.stdout
    except FileNotFoundError:
        raise SourceUnavailable(name, "command not found")
    except PermissionError:
        raise SourcePermissionDenied(name, f"make '{name}' executable for this user")
    except subprocess.TimeoutExpired:
        raise SourceUnavailable(name, f"timed out after {timeout}s")
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").lower()
        if any(marker in stderr for marker in _PERMISSION_MARKERS):
            raise SourcePermissionDenied(
                name, f"run batlab as root (sudo) to query '{name}'"
            )
        raise SourceUnavailable(name, f"exited with status {e.returncode}")


class BatterySource(ABC):
    """A single OS facility capable of reporting battery state."""

    tag: SourceTag

    @abstractmethod
    def read(self) -> BatteryReading:
        """
        Read percentage and discharge rate.

        Raises:
            SourceUnavailable: Or a subclass, when no complete reading exists
        """

    def read_capacity(self) -> Optional[BatteryCapacity]:
        """Battery energy capacity, if this source exposes it."""
        return None

    @property
    def name(self) -> str:
        return self.tag.value


def _reading(source: SourceTag, percentage: Optional[float], watts: Optional[float]) -> BatteryReading:
    """Build a reading, signalling Unavailable when either half is missing."""
    if percentage is None or not 0.0 <= percentage <= 100.0:
        raise SourceUnavailable(source.value, f"no valid percentage ({percentage})")
    if watts is None or watts <= 0:
        raise RateUnavailable(source.value, percentage)
    return BatteryReading(percentage=percentage, watts=watts, source=source)


# ----------------------------------------------------------------------------
# Linux
# ----------------------------------------------------------------------------


class UPowerSource(BatterySource):
    """Query the UPower daemon."""

    tag = SourceTag.UPOWER
    CHARGING_STATES = {"charging", "fully-charged", "pending-charge"}

    def __init__(self, runner: Optional[CommandRunner] = None, command_timeout: float = 5.0):
        self.runner = runner or (lambda args: run_command(args, command_timeout))
        self._device: Optional[str] = None

    def _info(self):
        if self._device is None:
            device = find_upower_battery(self.runner(["upower", "-e"]))
            if device is None:
                raise SourceUnavailable(self.name, "no battery device")
            self._device = device
        return parse_upower(self.runner(["upower", "-i", self._device]))

    def read(self) -> BatteryReading:
        info = self._info()
        if info.state in self.CHARGING_STATES:
            raise BatteryCharging(self.name, info.state)
        return _reading(self.tag, info.percentage, info.energy_rate)

    def read_capacity(self) -> Optional[BatteryCapacity]:
        try:
            info = self._info()
        except SourceUnavailable:
            return None
        if info.energy_full is None and info.energy_full_design is None:
            return None
        return BatteryCapacity(design_wh=info.energy_full_design, full_wh=info.energy_full)


class SysfsSource(BatterySource):
    """Read /sys/class/power_supply/BAT* directly."""

    tag = SourceTag.SYSFS
    CHARGING_STATES = {"charging", "full", "not charging"}

    def __init__(self, root: str = "/sys/class/power_supply"):
        self.root = Path(root)

    def _battery_dirs(self) -> List[Path]:
        try:
            return sorted(p for p in self.root.glob("BAT*") if p.is_dir())
        except OSError:
            return []

    def _read(self, path: Path) -> Optional[str]:
        try:
            return path.read_text().strip()
        except PermissionError:
            raise SourcePermissionDenied(
                self.name, f"grant read access to {path} (or run as root)"
            )
        except OSError:
            return None

    def _value(self, battery: Path, name: str) -> Optional[float]:
        return parse_number(self._read(battery / name))

    def _watts(self, battery: Path) -> Optional[float]:
        power_uw = self._value(battery, "power_now")
        if power_uw is not None:
            return abs(power_uw) / 1_000_000.0

        current_ua = self._value(battery, "current_now")
        voltage_uv = self._value(battery, "voltage_now")
        if current_ua is not None and voltage_uv is not None:
            return abs(current_ua) * voltage_uv / 1_000_000_000_000.0
        return None

    def read(self) -> BatteryReading:
        batteries = self._battery_dirs()
        if not batteries:
            raise SourceUnavailable(self.name, f"no battery under {self.root}")

        last_error: Optional[SourceUnavailable] = None
        for battery in batteries:
            status = (self._read(battery / "status") or "").lower()
            if status in self.CHARGING_STATES:
                raise BatteryCharging(self.name, status)

            try:
                return _reading(self.tag, self._value(battery, "capacity"), self._watts(battery))
            except SourceUnavailable as e:
                last_error = e
                continue

        assert last_error is not None
        raise last_error

    def read_capacity(self) -> Optional[BatteryCapacity]:
        for battery in self._battery_dirs():
            try:
                design = self._value(battery, "energy_full_design")
                full = self._value(battery, "energy_full")
                if design is not None or full is not None:
                    return BatteryCapacity(
                        design_wh=design / 1_000_000.0 if design is not None else None,
                        full_wh=full / 1_000_000.0 if full is not None else None,
                    )

                # Charge-reporting batteries: µAh x µV
                voltage = self._value(battery, "voltage_min_design")
                if voltage is None:
                    continue
                charge_design = self._value(battery, "charge_full_design")
                charge_full = self._value(battery, "charge_full")
                if charge_design is None and charge_full is None:
                    continue
                scale = voltage / 1_000_000_000_000.0
                return BatteryCapacity(
                    design_wh=charge_design * scale if charge_design is not None else None,
                    full_wh=charge_full * scale if charge_full is not None else None,
                )
            except SourcePermissionDenied:
                return None
        return None


# ----------------------------------------------------------------------------
# BSD
# ----------------------------------------------------------------------------


class AcpiconfSource(BatterySource):
    """Query `acpiconf -i <unit>`."""

    tag = SourceTag.ACPICONF

    def __init__(
        self,
        unit: int = 0,
        runner: Optional[CommandRunner] = None,
        command_timeout: float = 5.0,
    ):
        self.unit = unit
        self.runner = runner or (lambda args: run_command(args, command_timeout))

    def _info(self):
        return parse_acpiconf(self.runner(["acpiconf", "-i", str(self.unit)]))

    def read(self) -> BatteryReading:
        info = self._info()
        # "critical charging", "high charging"
        if "charging" in (info.state or "").split():
            raise BatteryCharging(self.name, info.state)

        watts: Optional[float] = None
        if info.present_rate is not None:
            if (info.rate_unit or "").lower() == "ma":
                if info.present_voltage_mv is not None:
                    watts = info.present_rate * info.present_voltage_mv / 1_000_000.0
            else:
                watts = info.present_rate / 1000.0  # mW -> W

        return _reading(self.tag, info.remaining_pct, watts)

    def read_capacity(self) -> Optional[BatteryCapacity]:
        try:
            info = self._info()
        except SourceUnavailable:
            return None
        if info.design_capacity is None and info.last_full_capacity is None:
            return None

        if (info.capacity_unit or "").lower() == "mah":
            if info.design_voltage_mv is None:
                return None
            scale = info.design_voltage_mv / 1_000_000.0
        else:
            scale = 1 / 1000.0  # mWh -> Wh

        return BatteryCapacity(
            design_wh=info.design_capacity * scale if info.design_capacity is not None else None,
            full_wh=info.last_full_capacity * scale if info.last_full_capacity is not None else None,
        )


class SysctlBatterySource(BatterySource):
    """hw.acpi.battery.* counters, used to cross-check acpiconf."""

    tag = SourceTag.SYSCTL

    def __init__(self, runner: Optional[CommandRunner] = None, command_timeout: float = 5.0):
        self.runner = runner or (lambda args: run_command(args, command_timeout))

    def read(self) -> BatteryReading:
        life = parse_number(self.runner(["sysctl", "-n", "hw.acpi.battery.life"]))
        rate_mw = parse_number(self.runner(["sysctl", "-n", "hw.acpi.battery.rate"]))
        if life is not None and life < 0:
            life = None
        watts = rate_mw / 1000.0 if rate_mw is not None and rate_mw > 0 else None
        return _reading(self.tag, life, watts)


# ----------------------------------------------------------------------------
# Platform selection
# ----------------------------------------------------------------------------


def battery_sources(os_family: OSFamily, acquisition_cfg: Optional[dict] = None) -> List[BatterySource]:
    """Primary sources for an OS family, in priority order."""
    cfg = acquisition_cfg or {}
    timeout = cfg.get("command_timeout", 5)

    if os_family == OSFamily.LINUX:
        return [
            UPowerSource(command_timeout=timeout),
            SysfsSource(root=cfg.get("power_supply_root", "/sys/class/power_supply")),
        ]
    if os_family == OSFamily.BSD:
        return [AcpiconfSource(unit=cfg.get("acpi_battery_unit", 0), command_timeout=timeout)]
    return []


def corroborating_sources(os_family: OSFamily, acquisition_cfg: Optional[dict] = None) -> List[BatterySource]:
    """Secondary sources consulted only to confirm implausible readings."""
    cfg = acquisition_cfg or {}
    if os_family == OSFamily.BSD:
        return [SysctlBatterySource(command_timeout=cfg.get("command_timeout", 5))]
    return []
