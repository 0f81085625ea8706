"""Intune managed device operations."""

import logging
from dataclasses import dataclass

from msgraph import GraphServiceClient
from msgraph.generated.device_management.managed_devices.item.wipe.wipe_post_request_body import (
    WipePostRequestBody,
)
from msgraph.generated.models.managed_device import ManagedDevice as GraphManagedDevice

from m365admin.core.msgraph_client import get_graph_client

logger = logging.getLogger(__name__)


@dataclass
class ManagedDevice:
    """A device enrolled in Intune on behalf of a user."""

    id: str
    device_name: str
    operating_system: str | None = None
    serial_number: str | None = None
    owner_type: str | None = None

    @property
    def is_personal(self) -> bool:
        """Personally owned (BYOD) devices."""
        return self.owner_type == "personal"


class DeviceManager:
    """Inventory and wipe a user's managed devices."""

    def __init__(self) -> None:
        """Initialize the device manager."""
        self.client: GraphServiceClient = get_graph_client()

    def _to_managed_device(self, device: GraphManagedDevice) -> ManagedDevice:
        owner_type = device.managed_device_owner_type
        return ManagedDevice(
            id=device.id or "",
            device_name=device.device_name or "",
            operating_system=device.operating_system,
            serial_number=device.serial_number,
            owner_type=getattr(owner_type, "value", owner_type),
        )

    async def get_user_devices(self, user_id: str) -> list[ManagedDevice]:
        """Get the managed devices registered to a user.

        Args:
            user_id: Entra user ID or UPN

        Returns:
            List of ManagedDevice objects
        """
        devices_builder = self.client.users.by_user_id(user_id).managed_devices
        result = await devices_builder.get()

        devices = []
        while result:
            devices.extend(self._to_managed_device(d) for d in result.value or [] if d.id)
            if not result.odata_next_link:
                break
            result = await devices_builder.with_url(result.odata_next_link).get()

        logger.info(f"Found {len(devices)} managed devices for {user_id}")
        return devices

    async def wipe_device(self, device: ManagedDevice, keep_user_data: bool = False) -> bool:
        """Issue a remote wipe.

        The wipe is queued by Intune and runs the next time the device
        checks in.

        Args:
            device: The device to wipe
            keep_user_data: Preserve user data on the device

        Returns:
            True if the wipe was accepted
        """
        request_body = WipePostRequestBody(
            keep_enrollment_data=False,
            keep_user_data=keep_user_data,
        )

        try:
            await (
                self.client.device_management.managed_devices.by_managed_device_id(device.id)
                .wipe.post(request_body)
            )
            logger.info(f"Wipe issued for {device.device_name} ({device.id})")
            return True
        except Exception as e:
            logger.error(f"Failed to wipe {device.device_name} ({device.id}): {e}")
            return False
