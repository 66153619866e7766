from types import SimpleNamespace
from typing import Any, cast

from azure_boot.clients.azure_compute import ComputeClient
from azure_boot.power_states import PowerState
from tests.fakes import MINECRAFT


class FakeVirtualMachines:
    def __init__(self, codes: list[str] | None):
        self.codes = codes
        self.calls: list[tuple[str, str, str]] = []

    def instance_view(self, resource_group: str, name: str):
        self.calls.append(("instance_view", resource_group, name))
        statuses = None
        if self.codes is not None:
            statuses = [SimpleNamespace(code=code) for code in self.codes]
        return SimpleNamespace(statuses=statuses)

    def begin_start(self, resource_group: str, name: str):
        self.calls.append(("begin_start", resource_group, name))

    def begin_power_off(self, resource_group: str, name: str):
        self.calls.append(("begin_power_off", resource_group, name))

    def begin_deallocate(self, resource_group: str, name: str):
        self.calls.append(("begin_deallocate", resource_group, name))

    def get(self, resource_group: str, name: str):
        self.calls.append(("get", resource_group, name))


def _client(codes: list[str] | None) -> tuple[ComputeClient, FakeVirtualMachines]:
    vms = FakeVirtualMachines(codes)
    return ComputeClient(cast(Any, SimpleNamespace(virtual_machines=vms))), vms


def test_power_state_reads_instance_view():
    client, vms = _client(["ProvisioningState/succeeded", "PowerState/deallocated"])
    assert client.power_state(MINECRAFT) == PowerState.DEALLOCATED
    assert vms.calls == [("instance_view", "games", "mc-vm")]


def test_missing_statuses_are_unknown():
    client, _ = _client(None)
    assert client.power_state(MINECRAFT) is None


def test_actions_target_the_configured_vm():
    client, vms = _client([])
    client.begin_start(MINECRAFT)
    client.begin_power_off(MINECRAFT)
    client.begin_deallocate(MINECRAFT)
    client.ensure_exists(MINECRAFT)
    assert vms.calls == [
        ("begin_start", "games", "mc-vm"),
        ("begin_power_off", "games", "mc-vm"),
        ("begin_deallocate", "games", "mc-vm"),
        ("get", "games", "mc-vm"),
    ]
