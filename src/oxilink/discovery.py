"""
Discovery of the vendor oximetry service and characteristic.
"""

import logging
from typing import Tuple

from .core import CHARACTERISTIC_KEYWORD, TARGET_SERVICE_NAME
from .errors import DiscoveryError, DiscoveryErrorKind, GattCommunicationError
from .link import GattLink
from .models import CharacteristicDescriptor, ServiceDescriptor, Severity, UserInterface

logger = logging.getLogger(__name__)


class DiscoveryPipeline:
    """Resolves the oximetry characteristic on a connected device.

    Each step short-circuits with a ``DiscoveryError`` naming the step that
    failed. Enumerations always bypass the platform cache.
    """

    def __init__(
        self,
        ui: UserInterface,
        service_name: str = TARGET_SERVICE_NAME,
        characteristic_keyword: str = CHARACTERISTIC_KEYWORD,
    ) -> None:
        self._ui = ui
        self.service_name = service_name
        self.characteristic_keyword = characteristic_keyword

    async def discover(
        self, link: GattLink
    ) -> Tuple[ServiceDescriptor, CharacteristicDescriptor]:
        """Find the target service and characteristic.

        Args:
            link: Opened device link

        Returns:
            The matched (service, characteristic) pair

        Raises:
            DiscoveryError: If any step fails
        """
        try:
            services = await link.get_services(cached=False)
        except GattCommunicationError as e:
            raise DiscoveryError(
                DiscoveryErrorKind.SERVICES_UNREACHABLE, "Device unreachable"
            ) from e
        self._ui.notify_user(f"Found {len(services)} services", Severity.STATUS)

        service = next((s for s in services if s.name == self.service_name), None)
        if service is None:
            raise DiscoveryError(
                DiscoveryErrorKind.SERVICE_NOT_FOUND,
                f"Service not found: {self.service_name}",
            )
        logger.debug(f"Selected service {service.uuid}")

        try:
            allowed = await link.request_access(service)
        except GattCommunicationError as e:
            raise DiscoveryError(
                DiscoveryErrorKind.ACCESS_DENIED,
                f"Error accessing service [{service.name}]: {e}",
            ) from e
        if not allowed:
            raise DiscoveryError(
                DiscoveryErrorKind.ACCESS_DENIED,
                f"Error accessing service [{service.name}].",
            )

        try:
            characteristics = await link.get_characteristics(service, cached=False)
        except GattCommunicationError as e:
            raise DiscoveryError(
                DiscoveryErrorKind.CHARACTERISTICS_UNREACHABLE,
                f"Restricted service. Can't read characteristics: {e}",
            ) from e

        characteristic = next(
            (c for c in characteristics if self.characteristic_keyword in c.name),
            None,
        )
        if characteristic is None:
            raise DiscoveryError(
                DiscoveryErrorKind.CHARACTERISTIC_NOT_FOUND,
                f"No characteristic matching '{self.characteristic_keyword}'",
            )
        self._ui.notify_user("Accessing service...", Severity.STATUS)

        try:
            descriptors = await link.get_descriptors(characteristic, cached=False)
        except GattCommunicationError as e:
            raise DiscoveryError(
                DiscoveryErrorKind.DESCRIPTORS_UNREACHABLE,
                f"Descriptor read failure: {e.status.value}",
            ) from e
        logger.debug(
            f"Characteristic {characteristic.name} has {len(descriptors)} descriptors"
        )

        return service, characteristic
