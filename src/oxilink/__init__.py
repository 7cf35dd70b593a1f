"""
OxiLink - Nonin Pulse Oximeter BLE Client

A Python library for streaming heart rate and SpO2 readings from a Nonin
pulse oximeter via Bluetooth Low Energy.
"""

__version__ = "0.1.0"
__description__ = "CLI and REPL client for Nonin BLE pulse oximeters"

from .controller import OximeterController, Session
from .decoder import decode
from .display import DisplayManager
from .models import Reading
from .recorder import Recorder

__all__ = [
    "OximeterController",
    "Session",
    "DisplayManager",
    "Reading",
    "Recorder",
    "decode",
]
