#!/usr/bin/env python
"""Streams and records readings from a real oximeter."""

import asyncio
import logging

import pytest
from oxilink.controller import LifecycleState, OximeterController
from oxilink.display import DisplayManager
from oxilink.scanner import scan_for_oximeters

# Enable logging
logging.basicConfig(level=logging.INFO, format="%(message)s")


@pytest.mark.integration
@pytest.mark.asyncio
async def test_stream_and_record(tmp_path):
    """Connect, show live readings, record a few seconds, reset."""
    display = DisplayManager()
    controller = OximeterController(display)

    devices = await scan_for_oximeters(timeout=5.0)
    if not devices:
        pytest.skip("No Nonin oximeter found - skipping integration test")

    print(f"Connecting to {devices[0].name} ({devices[0].address})...")
    await controller.connect(devices[0].address)
    assert controller.state is LifecycleState.ACTIVE

    display.start_live()
    path = tmp_path / "NN3150.txt"

    async def pick():
        return path

    await controller.start_recording(pick)

    # Wait for readings
    await asyncio.sleep(5)

    await controller.stop_recording()
    display.stop_live()

    lines = path.read_text().split("\n")
    print(f"Recorded {len(lines)} lines: {lines}")
    assert len(lines) >= 4
    assert all(len(line.split(";")) == 2 for line in lines)

    await controller.teardown()
    assert controller.state is LifecycleState.IDLE

