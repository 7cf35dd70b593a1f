"""
Selection of the oximeter to connect to.

Scans for advertising devices, keeps only those whose name follows the
supported naming convention, and remembers the last selected address.
"""

import json
import logging
import os
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from bleak import BleakScanner
from bleak.exc import BleakError

from .core import SCAN_TIMEOUT, SUPPORTED_NAME_KEYWORD

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceInfo:
    """Advertised device offered for connection."""

    address: str
    name: str


def is_supported_device(name: Optional[str]) -> bool:
    """Check whether an advertised name belongs to a supported oximeter."""
    return bool(name) and SUPPORTED_NAME_KEYWORD in name.upper()  # type: ignore[union-attr]


async def scan_for_oximeters(timeout: float = SCAN_TIMEOUT) -> List[DeviceInfo]:
    """Scan for supported oximeters on BLE.

    Returns:
        Supported devices found, empty if none (or scanning failed)
    """
    try:
        logger.info("Scanning for Nonin oximeters...")
        devices = await BleakScanner.discover(timeout=timeout)
    except (BleakError, OSError) as e:
        logger.error(f"Scan failed: {e}")
        return []

    found = [
        DeviceInfo(address=device.address, name=device.name or "")
        for device in devices
        if is_supported_device(device.name)
    ]
    for device in found:
        logger.info(f"Found oximeter: {device.name} ({device.address})")
    if not found:
        logger.warning("No supported oximeters found")
    return found


def get_cache_file() -> Path:
    """Get the standard cache file location for the selected device."""
    # Check XDG_CACHE_HOME first (Linux/Unix standard)
    cache_dir = os.environ.get("XDG_CACHE_HOME")
    if cache_dir:
        cache_path = Path(cache_dir) / "oxilink"
    else:
        system = platform.system()
        if system == "Darwin":  # macOS
            cache_path = Path.home() / "Library" / "Caches" / "oxilink"
        elif system == "Windows":
            local_appdata = os.environ.get("LOCALAPPDATA")
            if local_appdata:
                cache_path = Path(local_appdata) / "oxilink"
            else:
                appdata = os.environ.get(
                    "APPDATA", str(Path.home() / "AppData" / "Roaming")
                )
                cache_path = Path(appdata) / "oxilink"
        else:  # Linux/Unix fallback
            cache_path = Path.home() / ".cache" / "oxilink"

    cache_path.mkdir(parents=True, exist_ok=True)
    return cache_path / "selected_device.json"


def load_selected_device() -> Optional[DeviceInfo]:
    """Load the last selected device from the cache file."""
    try:
        cache_file = get_cache_file()
        if cache_file.exists():
            with open(cache_file, "r") as f:
                data = json.load(f)
            if data.get("address"):
                return DeviceInfo(address=data["address"], name=data.get("name", ""))
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to load cached device: {e}")
    return None


def save_selected_device(device: DeviceInfo) -> None:
    """Save the selected device to the cache file."""
    try:
        cache_file = get_cache_file()
        with open(cache_file, "w") as f:
            json.dump({"address": device.address, "name": device.name}, f, indent=2)
        logger.info(f"Cached device: {device.name} ({device.address})")
    except OSError as e:
        logger.warning(f"Failed to save cached device: {e}")


def clear_selected_device() -> None:
    """Forget the cached device, forcing a new selection."""
    try:
        cache_file = get_cache_file()
        if cache_file.exists():
            cache_file.unlink()
            logger.info("Cleared cached device")
    except OSError as e:
        logger.warning(f"Failed to clear cached device: {e}")
