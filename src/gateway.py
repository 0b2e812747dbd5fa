"""
Cloud resource gateway contract used by the provisioning and decommission flows.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

from models import ObservedInstance


class GatewayError(RuntimeError):
    """Raised when the provider API rejects or fails a request."""


@dataclass(frozen=True)
class PortRange:
    """Ingress rule opening a port range to a source CIDR."""

    from_port: int
    to_port: int
    protocol: str = "tcp"
    cidr: str = "0.0.0.0/0"


@dataclass
class NetworkInterfaceSpec:
    """Primary network interface of a new instance."""

    subnet_id: str
    policy_ids: List[str] = field(default_factory=list)
    associate_public_ip: bool = True
    device_index: int = 0


class ResourceGateway(Protocol):
    """
    Provider operations needed by the flows.

    Every call is synchronous. Describe-style calls return None when the
    resource does not exist; anything else that goes wrong raises
    GatewayError.
    """

    def resolve_network(self, subnet_id: str) -> Optional[str]: ...

    def create_ingress_policy(
        self, name: str, description: str, network: str
    ) -> str: ...

    def authorize_ingress(self, policy_id: str, port_ranges: List[PortRange]) -> None: ...

    def delete_policy(self, policy_id: str) -> None: ...

    def create_instance(
        self,
        image: str,
        machine_type: str,
        interface: NetworkInterfaceSpec,
        tags: Dict[str, str],
    ) -> ObservedInstance: ...

    def describe_instance(self, instance_id: str) -> Optional[ObservedInstance]: ...

    def terminate_instance(self, instance_id: str) -> Optional[ObservedInstance]: ...
