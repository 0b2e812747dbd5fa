"""
Invocation entry point: dispatches a request to the matching flow.
"""

import logging
from typing import Optional

from config import HandlerConfig
from decommission import DecommissionFlow
from gateway import GatewayError, ResourceGateway
from models import CallbackContext, HandlerErrorCode, ProgressEvent, ResourceModel
from provisioning import ProvisioningFlow

logger = logging.getLogger(__name__)

CREATE = "CREATE"
DELETE = "DELETE"

FLOWS = {
    CREATE: ProvisioningFlow,
    DELETE: DecommissionFlow,
}


def handle_request(
    action: str,
    model: ResourceModel,
    callback_context: Optional[CallbackContext],
    gateway: ResourceGateway,
    config: HandlerConfig,
) -> ProgressEvent:
    """
    Run one step of the flow selected by ``action``.

    Args:
        action: "CREATE" or "DELETE" (case-insensitive)
        model: Desired resource state
        callback_context: Snapshot from the previous invocation, or None
        gateway: Provider gateway
        config: Handler configuration

    Returns:
        ProgressEvent; gateway failures are reported as FAILED events
    """
    action = (action or "").upper()
    flow_cls = FLOWS.get(action)
    if flow_cls is None:
        return ProgressEvent.failed(
            HandlerErrorCode.INVALID_REQUEST, f"Unsupported action: {action}", model
        )

    if action == DELETE and not model.instance_id:
        return ProgressEvent.failed(
            HandlerErrorCode.INVALID_REQUEST, "instanceId is required for DELETE", model
        )

    flow = flow_cls(gateway, config)
    try:
        return flow.handle(model, callback_context)
    except GatewayError as e:
        logger.error(f"{action} step for {model.name} failed: {e}")
        return ProgressEvent.failed(
            HandlerErrorCode.SERVICE_INTERNAL_ERROR, str(e), model
        )
