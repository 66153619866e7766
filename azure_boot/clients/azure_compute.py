import logging

from azure.identity import ClientSecretCredential
from azure.mgmt.compute import ComputeManagementClient

from azure_boot.config import Settings, VMConfig
from azure_boot.power_states import PowerState, latest_power_state


logger = logging.getLogger(__name__)


class ComputeClient:
    """Thin wrapper over the Azure compute API for the configured vms.

    The ``begin_*`` calls only start the long running operation; convergence
    is observed by later power state queries.
    """

    def __init__(self, client: ComputeManagementClient):
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "ComputeClient":
        credential = ClientSecretCredential(
            tenant_id=settings.azure_tenant_id,
            client_id=settings.azure_client_id,
            client_secret=settings.azure_client_secret,
        )
        return cls(ComputeManagementClient(credential, settings.azure_subscription_id))

    def power_state(self, vm: VMConfig) -> PowerState | None:
        view = self.client.virtual_machines.instance_view(
            vm.resource_group, vm.azure_name
        )
        statuses = view.statuses or []
        power = latest_power_state(status.code for status in statuses)
        if power is None:
            logger.warning(
                "no known power state for vm=%s statuses=%s",
                vm.friendly_name,
                [status.code for status in statuses],
            )
        return power

    def begin_start(self, vm: VMConfig) -> None:
        self.client.virtual_machines.begin_start(vm.resource_group, vm.azure_name)

    def begin_power_off(self, vm: VMConfig) -> None:
        self.client.virtual_machines.begin_power_off(vm.resource_group, vm.azure_name)

    def begin_deallocate(self, vm: VMConfig) -> None:
        self.client.virtual_machines.begin_deallocate(vm.resource_group, vm.azure_name)

    def ensure_exists(self, vm: VMConfig) -> None:
        self.client.virtual_machines.get(vm.resource_group, vm.azure_name)
