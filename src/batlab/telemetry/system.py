"""CPU load, RAM usage, and temperature readers, plus host description."""

import logging
import os
import platform
import socket
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence

from ..models import SystemInfo, SystemMetrics
from .parsers import (
    first_present,
    parse_fields,
    parse_loadavg,
    parse_meminfo,
    parse_millidegrees,
    parse_number,
    parse_temperature,
    ram_used_pct,
)
from .sources import OSFamily, SourceUnavailable, run_command

logger = logging.getLogger(__name__)

# hwmon driver names that report the CPU package temperature
CPU_SENSOR_NAMES = ("coretemp", "k10temp", "zenpower", "cpu_thermal")

BSD_TEMPERATURE_SYSCTLS = (
    "dev.cpu.0.temperature",
    "hw.acpi.thermal.tz0.temperature",
    "hw.acpi.thermal.tz1.temperature",
    "dev.acpi_tz.0.temperature",
)


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text()
    except OSError:
        return None


class SystemMetricReader:
    """Reads supplementary metrics; every field falls back to 0.0."""

    def cpu_load(self) -> Optional[float]:
        return None

    def ram_pct(self) -> Optional[float]:
        return None

    def temp_c(self) -> Optional[float]:
        return None

    def read(self) -> SystemMetrics:
        return SystemMetrics(
            cpu_load=self._safe(self.cpu_load),
            ram_pct=self._safe(self.ram_pct),
            temp_c=self._safe(self.temp_c),
        )

    @staticmethod
    def _safe(reader: Callable[[], Optional[float]]) -> float:
        try:
            value = reader()
        except (OSError, ValueError, SourceUnavailable) as e:
            logger.debug(f"System metric {reader.__name__} failed: {e}")
            return 0.0
        return float(value) if value is not None else 0.0


class LinuxSystemReader(SystemMetricReader):
    def __init__(self, proc_root: str = "/proc", sys_root: str = "/sys"):
        self.proc_root = Path(proc_root)
        self.sys_root = Path(sys_root)

    def cpu_load(self) -> Optional[float]:
        text = _read_text(self.proc_root / "loadavg")
        return parse_loadavg(text) if text else None

    def ram_pct(self) -> Optional[float]:
        text = _read_text(self.proc_root / "meminfo")
        return ram_used_pct(parse_meminfo(text)) if text else None

    def _hwmon_dirs(self) -> list:
        return sorted((self.sys_root / "class" / "hwmon").glob("hwmon*"))

    def _cpu_sensor_temps(self) -> Iterator[Optional[float]]:
        for hwmon in self._hwmon_dirs():
            name = (_read_text(hwmon / "name") or "").strip()
            if name not in CPU_SENSOR_NAMES:
                continue
            for sensor in sorted(hwmon.glob("temp*_input")):
                yield parse_millidegrees(_read_text(sensor))

    def _thermal_zone_temps(self) -> Iterator[Optional[float]]:
        zones = sorted((self.sys_root / "class" / "thermal").glob("thermal_zone*"))
        for zone in zones:
            yield parse_millidegrees(_read_text(zone / "temp"))

    def _any_hwmon_temps(self) -> Iterator[Optional[float]]:
        for hwmon in self._hwmon_dirs():
            for sensor in sorted(hwmon.glob("temp*_input")):
                yield parse_millidegrees(_read_text(sensor))

    def temp_c(self) -> Optional[float]:
        for candidates in (
            self._cpu_sensor_temps(),
            self._thermal_zone_temps(),
            self._any_hwmon_temps(),
        ):
            value = first_present(candidates)
            if value is not None:
                return value
        return None


class BSDSystemReader(SystemMetricReader):
    def __init__(self, runner: Optional[Callable[[Sequence[str]], str]] = None, command_timeout: float = 5.0):
        self.runner = runner or (lambda args: run_command(args, command_timeout))

    def _sysctl(self, name: str) -> Optional[str]:
        try:
            return self.runner(["sysctl", "-n", name])
        except SourceUnavailable as e:
            logger.debug(f"sysctl {name}: {e.reason}")
            return None

    def cpu_load(self) -> Optional[float]:
        text = self._sysctl("vm.loadavg")
        return parse_loadavg(text) if text else None

    def ram_pct(self) -> Optional[float]:
        total = parse_number(self._sysctl("vm.stats.vm.v_page_count"))
        if not total or total <= 0:
            return None

        available = 0.0
        for counter in ("v_free_count", "v_inactive_count", "v_cache_count"):
            available += parse_number(self._sysctl(f"vm.stats.vm.{counter}")) or 0.0

        used = max(0.0, total - available)
        return used / total * 100.0

    def temp_c(self) -> Optional[float]:
        return first_present(
            parse_temperature(self._sysctl(name)) for name in BSD_TEMPERATURE_SYSCTLS
        )


class FallbackSystemReader(SystemMetricReader):
    """Platforms without a dedicated reader: load average only."""

    def cpu_load(self) -> Optional[float]:
        if hasattr(os, "getloadavg"):
            return os.getloadavg()[0]
        return None


def system_metric_reader(os_family: OSFamily, command_timeout: float = 5.0) -> SystemMetricReader:
    if os_family == OSFamily.LINUX:
        return LinuxSystemReader()
    if os_family == OSFamily.BSD:
        return BSDSystemReader(command_timeout=command_timeout)
    return FallbackSystemReader()


def _linux_pretty_name(os_release: Optional[str]) -> Optional[str]:
    if not os_release:
        return None
    for line in os_release.splitlines():
        key, _, value = line.partition("=")
        if key.strip() == "PRETTY_NAME":
            return value.strip().strip('"') or None
    return None


def read_system_info(
    os_family: OSFamily,
    runner: Optional[Callable[[Sequence[str]], str]] = None,
    etc_root: str = "/etc",
    proc_root: str = "/proc",
) -> SystemInfo:
    """Describe the host for run metadata; unknown parts become 'unknown'."""
    os_name: Optional[str] = None
    cpu: Optional[str] = None

    if os_family == OSFamily.LINUX:
        os_name = _linux_pretty_name(_read_text(Path(etc_root) / "os-release"))
        cpuinfo = _read_text(Path(proc_root) / "cpuinfo")
        if cpuinfo:
            cpu = parse_fields(cpuinfo).get("model name")
    elif os_family == OSFamily.BSD:
        runner = runner or (lambda args: run_command(args, 5.0))
        try:
            cpu = runner(["sysctl", "-n", "hw.model"]).strip() or None
        except SourceUnavailable as e:
            logger.debug(f"sysctl hw.model: {e.reason}")

    if not os_name:
        os_name = f"{platform.system()} {platform.release()}".strip()

    return SystemInfo(
        hostname=socket.gethostname() or "unknown",
        os=os_name or "unknown",
        kernel=platform.release() or "unknown",
        cpu=cpu or platform.processor() or "unknown",
        machine=platform.machine() or "unknown",
    )
