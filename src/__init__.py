"""
Resumable provisioning handlers for a site instance and its ingress firewall rule.
"""

from clients import ComputeRestClient
from config import HandlerConfig
from decommission import DecommissionFlow
from gateway import GatewayError, NetworkInterfaceSpec, PortRange, ResourceGateway
from handlers import handle_request
from log_utils import setup_logging
from models import (
    CallbackContext,
    HandlerErrorCode,
    ObservedInstance,
    OperationStatus,
    ProgressEvent,
    ResourceModel,
)
from provisioning import ProvisioningFlow

__all__ = [
    "ComputeRestClient",
    "HandlerConfig",
    "DecommissionFlow",
    "GatewayError",
    "NetworkInterfaceSpec",
    "PortRange",
    "ResourceGateway",
    "handle_request",
    "setup_logging",
    "CallbackContext",
    "HandlerErrorCode",
    "ObservedInstance",
    "OperationStatus",
    "ProgressEvent",
    "ResourceModel",
    "ProvisioningFlow",
]
