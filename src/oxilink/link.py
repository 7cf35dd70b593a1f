"""
Device handle abstraction over the platform BLE stack.

``GattLink`` is the narrow surface the discovery, subscription and lifecycle
components need from a connected peripheral. ``BleakLink`` implements it with
bleak and converts every platform failure into ``GattCommunicationError``.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Protocol

from bleak import BleakClient
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.exc import BleakDBusError, BleakDeviceNotFoundError, BleakError

from .core import (
    CONNECT_TIMEOUT,
    E_DEVICE_NOT_AVAILABLE,
    OXIMETRY_CHARACTERISTIC_UUID,
    USER_DESCRIPTION_UUID,
)
from .errors import GattCommunicationError, GattStatus
from .models import CharacteristicDescriptor, ClientConfiguration, ServiceDescriptor

logger = logging.getLogger(__name__)

ValueHandler = Callable[[bytes], None]

# Vendor characteristics the platform has no name for
VENDOR_CHARACTERISTIC_NAMES = {
    OXIMETRY_CHARACTERISTIC_UUID: "Nonin Continuous Oximetry",
}

# BlueZ errors reported while the adapter is powered off
_RADIO_OFF_DBUS_ERRORS = ("org.bluez.Error.NotReady", "org.bluez.Error.NotAvailable")


def service_display_name(uuid: str, description: Optional[str]) -> str:
    """Name a service the way the platform displays it.

    Args:
        uuid: Service UUID
        description: Assigned-number description, "Unknown" if not assigned

    Returns:
        The description, or "Custom Service: <uuid>" for vendor services
    """
    if description and description != "Unknown":
        return description
    return f"Custom Service: {uuid.lower()}"


def characteristic_display_name(
    uuid: str, description: Optional[str], user_description: Optional[str] = None
) -> str:
    """Name a characteristic, preferring its user description."""
    if user_description:
        return user_description
    vendor_name = VENDOR_CHARACTERISTIC_NAMES.get(uuid.lower())
    if vendor_name:
        return vendor_name
    if description and description != "Unknown":
        return description
    return f"Custom Characteristic: {uuid.lower()}"


def is_radio_unavailable(error: BaseException) -> bool:
    """Check whether a platform error means the Bluetooth radio is off."""
    winerror = getattr(error, "winerror", None)
    if winerror is not None and (winerror & 0xFFFFFFFF) == E_DEVICE_NOT_AVAILABLE:
        return True
    if isinstance(error, BleakDBusError):
        return error.dbus_error in _RADIO_OFF_DBUS_ERRORS
    return False


class GattLink(Protocol):
    """Connection to a single peripheral."""

    device_id: str

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def get_services(self, cached: bool = False) -> List[ServiceDescriptor]: ...

    async def request_access(self, service: ServiceDescriptor) -> bool: ...

    async def get_characteristics(
        self, service: ServiceDescriptor, cached: bool = False
    ) -> List[CharacteristicDescriptor]: ...

    async def get_descriptors(
        self, characteristic: CharacteristicDescriptor, cached: bool = False
    ) -> List[str]: ...

    async def write_client_configuration(
        self, characteristic: CharacteristicDescriptor, value: ClientConfiguration
    ) -> None: ...

    def add_value_handler(
        self, characteristic: CharacteristicDescriptor, handler: ValueHandler
    ) -> None: ...

    def remove_value_handler(
        self, characteristic: CharacteristicDescriptor, handler: ValueHandler
    ) -> None: ...

    def set_on_disconnect(self, callback: Optional[Callable[[], None]]) -> None: ...


class BleakLink:
    """GattLink backed by a bleak client."""

    def __init__(self, device_id: str, timeout: float = CONNECT_TIMEOUT) -> None:
        """Create an unopened link.

        Args:
            device_id: Bluetooth address (or platform device id)
            timeout: Connection timeout in seconds
        """
        self.device_id = device_id
        self._client = BleakClient(
            device_id,
            disconnected_callback=self._on_device_disconnect,
            timeout=timeout,
            # Services may change between sessions, always fetch them fresh
            winrt={"use_cached_services": False},
        )
        self._handlers: Dict[int, List[ValueHandler]] = {}
        self._on_disconnect: Optional[Callable[[], None]] = None
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._client.is_connected

    def set_on_disconnect(self, callback: Optional[Callable[[], None]]) -> None:
        """Set callback for unexpected disconnects."""
        self._on_disconnect = callback

    async def open(self) -> None:
        try:
            await self._client.connect()
        except BleakDeviceNotFoundError as e:
            raise GattCommunicationError(
                GattStatus.UNREACHABLE, f"Device {self.device_id} not found"
            ) from e
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            if is_radio_unavailable(e):
                raise GattCommunicationError(
                    GattStatus.DEVICE_NOT_AVAILABLE, "Bluetooth radio is not on."
                ) from e
            raise GattCommunicationError(
                GattStatus.UNREACHABLE, f"Failed to connect to device: {e}"
            ) from e
        logger.info(f"Connected to {self.device_id}")

    async def close(self) -> None:
        self._closing = True
        self._handlers.clear()
        try:
            await self._client.disconnect()
            logger.info(f"Disconnected from {self.device_id}")
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Disconnect failed: {e}")

    async def get_services(self, cached: bool = False) -> List[ServiceDescriptor]:
        """List services resolved at connection time.

        Services are discovered with the platform cache disabled when the link
        is opened, so ``cached`` has no further effect here.
        """
        try:
            services = self._client.services
        except BleakError as e:
            raise GattCommunicationError(GattStatus.UNREACHABLE, str(e)) from e
        return [
            ServiceDescriptor(
                uuid=service.uuid,
                name=service_display_name(service.uuid, service.description),
                handle=service.handle,
            )
            for service in services
        ]

    async def request_access(self, service: ServiceDescriptor) -> bool:
        return self._client.is_connected

    async def get_characteristics(
        self, service: ServiceDescriptor, cached: bool = False
    ) -> List[CharacteristicDescriptor]:
        try:
            bleak_service = self._client.services.get_service(service.handle)
        except BleakError as e:
            raise GattCommunicationError(GattStatus.UNREACHABLE, str(e)) from e
        if bleak_service is None:
            raise GattCommunicationError(
                GattStatus.UNREACHABLE, f"Service {service.uuid} is no longer present"
            )

        characteristics = []
        for char in bleak_service.characteristics:
            user_description = await self._read_user_description(char)
            characteristics.append(
                CharacteristicDescriptor(
                    uuid=char.uuid,
                    name=characteristic_display_name(
                        char.uuid, char.description, user_description
                    ),
                    handle=char.handle,
                    supports_notify="notify" in char.properties,
                    supports_indicate="indicate" in char.properties,
                )
            )
        return characteristics

    async def get_descriptors(
        self, characteristic: CharacteristicDescriptor, cached: bool = False
    ) -> List[str]:
        char = self._get_bleak_characteristic(characteristic)
        return [descriptor.uuid for descriptor in char.descriptors]

    async def write_client_configuration(
        self, characteristic: CharacteristicDescriptor, value: ClientConfiguration
    ) -> None:
        """Write the CCCD through bleak's notify API.

        bleak selects indicate over notify from the characteristic
        properties, which matches the selection made by the caller.
        """
        char = self._get_bleak_characteristic(characteristic)
        try:
            if value is ClientConfiguration.NONE:
                await self._client.stop_notify(char)
            else:
                await self._client.start_notify(char, self._dispatch)
        except BleakDBusError as e:
            status = (
                GattStatus.ACCESS_DENIED
                if e.dbus_error == "org.bluez.Error.NotPermitted"
                else GattStatus.PROTOCOL_ERROR
            )
            raise GattCommunicationError(status, str(e)) from e
        except (BleakError, OSError, asyncio.TimeoutError) as e:
            raise GattCommunicationError(GattStatus.PROTOCOL_ERROR, str(e)) from e

    def add_value_handler(
        self, characteristic: CharacteristicDescriptor, handler: ValueHandler
    ) -> None:
        self._handlers.setdefault(characteristic.handle, []).append(handler)

    def remove_value_handler(
        self, characteristic: CharacteristicDescriptor, handler: ValueHandler
    ) -> None:
        handlers = self._handlers.get(characteristic.handle, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(characteristic.handle, None)

    def _get_bleak_characteristic(
        self, characteristic: CharacteristicDescriptor
    ) -> BleakGATTCharacteristic:
        try:
            char = self._client.services.get_characteristic(characteristic.handle)
        except BleakError as e:
            raise GattCommunicationError(GattStatus.UNREACHABLE, str(e)) from e
        if char is None:
            raise GattCommunicationError(
                GattStatus.UNREACHABLE,
                f"Characteristic {characteristic.uuid} is no longer present",
            )
        return char

    async def _read_user_description(
        self, char: BleakGATTCharacteristic
    ) -> Optional[str]:
        for descriptor in char.descriptors:
            if descriptor.uuid != USER_DESCRIPTION_UUID:
                continue
            try:
                value = await self._client.read_gatt_descriptor(descriptor.handle)
                return bytes(value).decode("utf-8", errors="replace").strip("\x00 ")
            except (BleakError, OSError, asyncio.TimeoutError) as e:
                logger.warning(f"Could not read description of {char.uuid}: {e}")
        return None

    def _dispatch(self, sender: BleakGATTCharacteristic, data: bytearray) -> None:
        """Forward a value change to the handlers registered for it.

        Called from bleak's notification context - must not block.
        """
        for handler in list(self._handlers.get(sender.handle, ())):
            handler(bytes(data))

    def _on_device_disconnect(self, client: BleakClient) -> None:
        if self._closing:
            return
        logger.warning(f"Device {self.device_id} disconnected")
        self._handlers.clear()
        if self._on_disconnect:
            try:
                self._on_disconnect()
            except Exception as e:
                logger.error(f"Disconnect callback error: {e}")
