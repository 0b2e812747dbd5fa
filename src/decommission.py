"""
Decommission flow: terminates the site instance and removes the ingress
policies that were attached to it.
"""

import logging
import time
from enum import Enum
from typing import List, Optional

from config import HandlerConfig
from gateway import ResourceGateway
from models import (
    TERMINATED_STATE,
    CallbackContext,
    HandlerErrorCode,
    ObservedInstance,
    ProgressEvent,
    ResourceModel,
)

logger = logging.getLogger(__name__)

TIMED_OUT_MESSAGE = "Timed out waiting for instance to terminate."


class DecommissionState(Enum):
    """Step selected for a decommission invocation."""

    EXHAUSTED = "exhausted"
    CAPTURE_GROUPS = "capture_groups"
    TERMINATE = "terminate"
    CLEANUP = "cleanup"
    WAITING = "waiting"


def classify(context: CallbackContext) -> DecommissionState:
    """Pick the decommission step for a snapshot. First match wins."""
    if context.retries_remaining == 0:
        return DecommissionState.EXHAUSTED
    if context.captured_policy_ids is None:
        return DecommissionState.CAPTURE_GROUPS
    if context.observed_instance is None:
        return DecommissionState.TERMINATE
    if context.observed_instance.state == TERMINATED_STATE:
        return DecommissionState.CLEANUP
    return DecommissionState.WAITING


def _dedupe(ids: List[str]) -> List[str]:
    return list(dict.fromkeys(ids))


class DecommissionFlow:
    """Drives instance termination and policy cleanup."""

    def __init__(self, gateway: ResourceGateway, config: HandlerConfig):
        self.gateway = gateway
        self.config = config

    def handle(
        self, model: ResourceModel, context: Optional[CallbackContext] = None
    ) -> ProgressEvent:
        """
        Run one decommission step.

        Args:
            model: Resource to remove; ``instance_id`` must be set
            context: Snapshot from the previous invocation, None on the first one

        Returns:
            ProgressEvent for this step

        Raises:
            GatewayError: If a provider call fails
        """
        if context is None:
            context = CallbackContext(retries_remaining=self.config.retry_budget)

        state = classify(context)
        logger.info(
            f"Decommissioning {model.instance_id}: step={state.value}, retries_remaining={context.retries_remaining}"
        )

        if state is DecommissionState.EXHAUSTED:
            logger.error(f"Decommissioning {model.instance_id} timed out")
            return ProgressEvent.failed(
                HandlerErrorCode.GENERAL_SERVICE_EXCEPTION, TIMED_OUT_MESSAGE, model
            )
        if state is DecommissionState.CAPTURE_GROUPS:
            return self._capture_policies(model)
        if state is DecommissionState.TERMINATE:
            return self._terminate(model, context)
        if state is DecommissionState.CLEANUP:
            return self._cleanup(model, context)
        return self._wait(model, context)

    def _capture_policies(self, model: ResourceModel) -> ProgressEvent:
        current = self.gateway.describe_instance(model.instance_id)
        if current is None or current.state == TERMINATED_STATE:
            logger.warning(f"Instance {model.instance_id} is already gone")
            return ProgressEvent.failed(
                HandlerErrorCode.NOT_FOUND,
                f"Instance {model.instance_id} not found",
            )

        captured = _dedupe(current.policy_ids)
        logger.info(
            f"Captured ingress policies for {model.instance_id}: {', '.join(captured) or 'none'}"
        )
        return ProgressEvent.in_progress(
            model,
            CallbackContext(
                retries_remaining=self.config.retry_budget,
                captured_policy_ids=captured,
            ),
            self._callback_delay(),
        )

    def _terminate(self, model: ResourceModel, context: CallbackContext) -> ProgressEvent:
        change = self.gateway.terminate_instance(model.instance_id)
        if change is None:
            change = ObservedInstance.not_found(model.instance_id)
        else:
            change = ObservedInstance(instance_id=change.instance_id, state=change.state)

        logger.info(f"Terminate requested for {model.instance_id} (state={change.state})")
        return ProgressEvent.in_progress(
            model,
            CallbackContext(
                retries_remaining=self.config.retry_budget,
                observed_instance=change,
                captured_policy_ids=context.captured_policy_ids,
            ),
            self._callback_delay(),
        )

    def _cleanup(self, model: ResourceModel, context: CallbackContext) -> ProgressEvent:
        failed: List[str] = []
        for policy_id in context.captured_policy_ids:
            try:
                self.gateway.delete_policy(policy_id)
                logger.info(f"Deleted ingress policy {policy_id}")
            except Exception as e:
                logger.error(f"Failed to delete ingress policy {policy_id}: {e}")
                failed.append(policy_id)

        if failed:
            logger.warning(
                f"Instance {model.instance_id} terminated; left behind policies: {', '.join(failed)}"
            )
        else:
            logger.info(f"✓ Instance {model.instance_id} terminated and cleaned up")
        return ProgressEvent.success(model)

    def _wait(self, model: ResourceModel, context: CallbackContext) -> ProgressEvent:
        if not self.config.delegate_wait:
            time.sleep(self.config.poll_interval)

        refreshed = self.gateway.describe_instance(model.instance_id)
        if refreshed is None:
            # terminate was issued by this workflow, so a purged instance is terminated
            refreshed = ObservedInstance(
                instance_id=model.instance_id, state=TERMINATED_STATE
            )

        logger.info(f"  {model.instance_id}: state={refreshed.state}")
        return ProgressEvent.in_progress(
            model,
            CallbackContext(
                retries_remaining=context.retries_remaining - 1,
                observed_instance=refreshed,
                captured_policy_ids=context.captured_policy_ids,
            ),
            self._callback_delay(),
        )

    def _callback_delay(self) -> int:
        return self.config.poll_interval if self.config.delegate_wait else 0
