"""
Provisioning flow: creates the ingress policy and the site instance, then
polls until the instance is running.

Each call performs one step and returns a ProgressEvent. Progress between
calls lives only in the CallbackContext the caller hands back.
"""

import logging
import time
import uuid
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

from config import HandlerConfig
from gateway import NetworkInterfaceSpec, PortRange, ResourceGateway
from models import (
    RUNNING_STATE,
    CallbackContext,
    HandlerErrorCode,
    ObservedInstance,
    ProgressEvent,
    ResourceModel,
)

logger = logging.getLogger(__name__)

TIMED_OUT_MESSAGE = "Timed out waiting for instance to become available."
SITE_NAME_TAG_KEY = "Name"
INGRESS_PORT_RANGES = [PortRange(80, 80), PortRange(443, 443)]


class ProvisioningState(Enum):
    """Step selected for a provisioning invocation."""

    EXHAUSTED = "exhausted"
    NOT_STARTED = "not_started"
    READY = "ready"
    WAITING = "waiting"


def classify(context: CallbackContext) -> ProvisioningState:
    """Pick the provisioning step for a snapshot. First match wins."""
    if context.retries_remaining == 0:
        return ProvisioningState.EXHAUSTED
    if context.observed_instance is None:
        return ProvisioningState.NOT_STARTED
    if context.observed_instance.state == RUNNING_STATE:
        return ProvisioningState.READY
    return ProvisioningState.WAITING


class ProvisioningFlow:
    """Drives instance and ingress policy creation to a running instance."""

    def __init__(self, gateway: ResourceGateway, config: HandlerConfig):
        """
        Initialize the provisioning flow.

        Args:
            gateway: Provider gateway used for every side effect
            config: Handler configuration (image, machine type, polling)
        """
        self.gateway = gateway
        self.config = config

    def handle(
        self, model: ResourceModel, context: Optional[CallbackContext] = None
    ) -> ProgressEvent:
        """
        Run one provisioning step.

        Args:
            model: Desired resource state
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
            f"Provisioning {model.name}: step={state.value}, retries_remaining={context.retries_remaining}"
        )

        if state is ProvisioningState.EXHAUSTED:
            logger.error(f"Provisioning {model.name} timed out")
            return ProgressEvent.failed(
                HandlerErrorCode.GENERAL_SERVICE_EXCEPTION, TIMED_OUT_MESSAGE, model
            )

        if state is ProvisioningState.NOT_STARTED:
            return self._start(model)

        instance = context.observed_instance
        if state is ProvisioningState.READY:
            logger.info(
                f"✓ Instance {instance.instance_id} for {model.name} is running at {instance.public_ip}"
            )
            return ProgressEvent.success(model.with_instance(instance))

        return self._wait(model, context)

    def _start(self, model: ResourceModel) -> ProgressEvent:
        network = self.gateway.resolve_network(model.subnet_id)
        if network is None:
            logger.error(f"Subnet {model.subnet_id} not found for {model.name}")
            return ProgressEvent.failed(
                HandlerErrorCode.INVALID_REQUEST,
                f"Subnet {model.subnet_id} not found",
                model,
            )

        policy_id = self.gateway.create_ingress_policy(
            name=f"{model.name}-{uuid.uuid4()}",
            description=f"Created for site instance: {model.name}",
            network=network,
        )
        logger.info(f"Created ingress policy {policy_id} for {model.name}")

        with self._release_policy_on_failure(policy_id):
            self.gateway.authorize_ingress(policy_id, INGRESS_PORT_RANGES)
            instance = self.gateway.create_instance(
                image=self.config.image,
                machine_type=self.config.machine_type,
                interface=NetworkInterfaceSpec(
                    subnet_id=model.subnet_id, policy_ids=[policy_id]
                ),
                tags={SITE_NAME_TAG_KEY: model.name},
            )

        if policy_id not in instance.policy_ids:
            # an earlier attempt already created the instance with its own policy
            logger.warning(
                f"Instance {instance.instance_id} does not use ingress policy {policy_id}, deleting it"
            )
            self._discard_policy(policy_id)

        logger.info(
            f"Started instance {instance.instance_id} for {model.name} (state={instance.state})"
        )
        return ProgressEvent.in_progress(
            model,
            CallbackContext(
                retries_remaining=self.config.retry_budget,
                observed_instance=instance,
            ),
            self._callback_delay(),
        )

    @contextmanager
    def _release_policy_on_failure(self, policy_id: str) -> Iterator[None]:
        """Delete ``policy_id`` if the wrapped block raises, then re-raise."""
        try:
            yield
        except Exception:
            logger.warning(f"Instance creation failed, deleting ingress policy {policy_id}")
            self._discard_policy(policy_id)
            raise

    def _discard_policy(self, policy_id: str) -> None:
        try:
            self.gateway.delete_policy(policy_id)
        except Exception as cleanup_error:
            logger.error(f"Failed to delete ingress policy {policy_id}: {cleanup_error}")

    def _wait(self, model: ResourceModel, context: CallbackContext) -> ProgressEvent:
        instance_id = context.observed_instance.instance_id
        if not self.config.delegate_wait:
            time.sleep(self.config.poll_interval)

        refreshed = self.gateway.describe_instance(instance_id)
        if refreshed is None:
            logger.warning(f"Instance {instance_id} not found while waiting")
            refreshed = ObservedInstance.not_found(instance_id)

        logger.info(
            f"  {model.name}: instance {instance_id} state={refreshed.state}"
        )
        return ProgressEvent.in_progress(
            model,
            CallbackContext(
                retries_remaining=context.retries_remaining - 1,
                observed_instance=refreshed,
            ),
            self._callback_delay(),
        )

    def _callback_delay(self) -> int:
        return self.config.poll_interval if self.config.delegate_wait else 0
