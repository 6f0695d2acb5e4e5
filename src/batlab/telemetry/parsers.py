"""
Line-oriented extractors for battery and system tool output.

Each extractor takes raw text and returns a typed optional value; none of them
raise on malformed input.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

_NUMBER_RE = re.compile(r"[+-]?(?:\d[\d.,]*\d|\d)")
# "1,234" groups thousands; "0,125" and "8,45" are decimal commas
_THOUSANDS_RE = re.compile(r"[+-]?[1-9]\d{0,2},\d{3}")


def parse_number(text: Optional[str]) -> Optional[float]:
    """
    Extract the first number from text, tolerating units and locale separators.

    Examples:
        "85%" -> 85.0, "  8,45 W" -> 8.45, "1.234,5 mWh" -> 1234.5, "1,234 mW" -> 1234.0,
        "12500 mW" -> 12500.0, "unknown" -> None
    """
    if text is None:
        return None

    match = _NUMBER_RE.search(text)
    if not match:
        return None

    token = match.group(0)
    if "," in token and "." in token:
        # Whichever separator comes last is the decimal mark
        if token.rfind(",") > token.rfind("."):
            token = token.replace(".", "").replace(",", ".")
        else:
            token = token.replace(",", "")
    elif "," in token:
        if token.count(",") > 1 or _THOUSANDS_RE.fullmatch(token):
            token = token.replace(",", "")
        else:
            token = token.replace(",", ".")
    elif token.count(".") > 1:
        token = token.replace(".", "")

    try:
        return float(token)
    except ValueError:
        return None


def split_field(line: str) -> Optional[Tuple[str, str]]:
    """Split a 'key: value' line into stripped key and value."""
    if ":" not in line:
        return None
    key, _, value = line.partition(":")
    return key.strip(), value.strip()


def parse_fields(text: str) -> Dict[str, str]:
    """Collect 'key: value' lines into a dict (first occurrence wins, keys lowercased)."""
    fields: Dict[str, str] = {}
    for line in text.splitlines():
        kv = split_field(line)
        if kv is None:
            continue
        key, value = kv
        key = key.lower()
        if key and key not in fields:
            fields[key] = value
    return fields


def first_word(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    words = value.split()
    return words[0].lower() if words else None


def unit_of(value: Optional[str]) -> Optional[str]:
    """Return the unit that follows the number in a value such as '12500 mW'."""
    if not value:
        return None
    words = value.split()
    return words[1] if len(words) >= 2 else None


# ----------------------------------------------------------------------------
# upower
# ----------------------------------------------------------------------------


@dataclass(frozen=True)
class UPowerInfo:
    state: Optional[str]
    percentage: Optional[float]
    energy_rate: Optional[float]  # W
    energy_full: Optional[float]  # Wh
    energy_full_design: Optional[float]  # Wh


def find_upower_battery(devices_output: str) -> Optional[str]:
    """Pick the first battery device path from `upower -e` output."""
    for line in devices_output.splitlines():
        line = line.strip()
        if "BAT" in line or "battery_" in line:
            return line
    return None


def parse_upower(text: str) -> UPowerInfo:
    """Parse `upower -i <device>` output."""
    fields = parse_fields(text)
    return UPowerInfo(
        state=first_word(fields.get("state")),
        percentage=parse_number(fields.get("percentage")),
        energy_rate=parse_number(fields.get("energy-rate")),
        energy_full=parse_number(fields.get("energy-full")),
        energy_full_design=parse_number(fields.get("energy-full-design")),
    )


# ----------------------------------------------------------------------------
# acpiconf (FreeBSD)
# ----------------------------------------------------------------------------


@dataclass(frozen=True)
class AcpiconfInfo:
    state: Optional[str]  # full lowercased text, e.g. "critical charging"
    remaining_pct: Optional[float]
    present_rate: Optional[float]
    rate_unit: Optional[str]  # "mW" or "mA"
    present_voltage_mv: Optional[float]
    design_capacity: Optional[float]
    last_full_capacity: Optional[float]
    capacity_unit: Optional[str]  # "mWh" or "mAh"
    design_voltage_mv: Optional[float]


def parse_acpiconf(text: str) -> AcpiconfInfo:
    """Parse `acpiconf -i <unit>` output."""
    fields = parse_fields(text)
    rate_raw = fields.get("present rate")
    design_raw = fields.get("design capacity")
    return AcpiconfInfo(
        state=(fields.get("state") or "").lower() or None,
        remaining_pct=parse_number(fields.get("remaining capacity")),
        present_rate=parse_number(rate_raw),
        rate_unit=unit_of(rate_raw),
        present_voltage_mv=parse_number(fields.get("present voltage")),
        design_capacity=parse_number(design_raw),
        last_full_capacity=parse_number(fields.get("last full capacity")),
        capacity_unit=unit_of(design_raw),
        design_voltage_mv=parse_number(fields.get("design voltage")),
    )


# ----------------------------------------------------------------------------
# Kernel counters
# ----------------------------------------------------------------------------


def parse_loadavg(text: str) -> Optional[float]:
    """
    First (1-minute) value of a load average line.

    Handles Linux "/proc/loadavg" ("0.15 0.20 0.18 1/123 456") and
    FreeBSD "vm.loadavg" ("{ 0.15 0.20 0.18 }").
    """
    cleaned = text.replace("{", " ").replace("}", " ").split()
    if not cleaned:
        return None
    return parse_number(cleaned[0])


def parse_meminfo(text: str) -> Dict[str, int]:
    """Parse /proc/meminfo into {field: kB}."""
    values: Dict[str, int] = {}
    for line in text.splitlines():
        kv = split_field(line)
        if kv is None:
            continue
        key, value = kv
        parts = value.split()
        if not parts:
            continue
        try:
            values[key] = int(parts[0])
        except ValueError:
            continue
    return values


def ram_used_pct(meminfo: Dict[str, int]) -> Optional[float]:
    """RAM used percentage, preferring MemAvailable over free+cache counters."""
    total = meminfo.get("MemTotal", 0)
    if total <= 0:
        return None

    available = meminfo.get("MemAvailable")
    if available is None:
        available = (
            meminfo.get("MemFree", 0)
            + meminfo.get("Buffers", 0)
            + meminfo.get("Cached", 0)
        )

    used = max(0, total - available)
    return used / total * 100.0


def parse_temperature(text: Optional[str]) -> Optional[float]:
    """
    Parse a sysctl temperature into Celsius.

    Accepts "45.0C", "318.1K" and raw deci-Kelvin integers ("3181").
    Zero or unparseable readings return None.
    """
    if text is None:
        return None
    value = parse_number(text)
    if value is None:
        return None

    stripped = text.strip().upper()
    if stripped.endswith("K"):
        celsius = value - 273.15
    elif stripped.endswith("C"):
        celsius = value
    elif value > 1000:
        celsius = value / 10.0 - 273.15
    else:
        celsius = value

    if celsius <= 0:
        return None
    return celsius


def parse_millidegrees(text: Optional[str]) -> Optional[float]:
    """Parse a sysfs millidegree reading; zero or garbage returns None."""
    value = parse_number(text) if text is not None else None
    if value is None or value <= 0:
        return None
    return value / 1000.0


def first_present(values: Iterable[Optional[float]]) -> Optional[float]:
    for value in values:
        if value is not None:
            return value
    return None
