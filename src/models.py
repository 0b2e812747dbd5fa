"""
Data models for the site instance handlers.

Everything here is plain data that crosses an invocation boundary, so each
type knows how to serialize itself to and from the JSON shape the caller
persists.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

RUNNING_STATE = "running"
TERMINATED_STATE = "terminated"


class OperationStatus(Enum):
    """Status carried by every progress event."""

    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class HandlerErrorCode(Enum):
    """Failure classification attached to FAILED events."""

    NOT_FOUND = "NotFound"
    GENERAL_SERVICE_EXCEPTION = "GeneralServiceException"
    INVALID_REQUEST = "InvalidRequest"
    SERVICE_INTERNAL_ERROR = "ServiceInternalError"


@dataclass
class ResourceModel:
    """Caller-supplied desired state of the site instance."""

    name: str
    subnet_id: str
    instance_id: Optional[str] = None
    public_ip: Optional[str] = None

    def with_instance(self, instance: "ObservedInstance") -> "ResourceModel":
        """Return a copy enriched with the instance id and public address."""
        return replace(
            self, instance_id=instance.instance_id, public_ip=instance.public_ip
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "subnetId": self.subnet_id,
            "instanceId": self.instance_id,
            "publicIp": self.public_ip,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceModel":
        return cls(
            name=data.get("name", ""),
            subnet_id=data.get("subnetId", ""),
            instance_id=data.get("instanceId"),
            public_ip=data.get("publicIp"),
        )


@dataclass(frozen=True)
class ObservedInstance:
    """Mirror of the provider's view of the compute instance."""

    instance_id: Optional[str] = None
    state: Optional[str] = None  # lifecycle label: "pending", "running", ...
    public_ip: Optional[str] = None
    policy_ids: List[str] = field(default_factory=list)

    @classmethod
    def not_found(cls, instance_id: Optional[str]) -> "ObservedInstance":
        """Empty value recorded when a describe call finds nothing."""
        return cls(instance_id=instance_id)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.instance_id is not None:
            data["instanceId"] = self.instance_id
        if self.state is not None:
            data["state"] = self.state
        if self.public_ip is not None:
            data["publicIp"] = self.public_ip
        if self.policy_ids:
            data["policyIds"] = list(self.policy_ids)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObservedInstance":
        return cls(
            instance_id=data.get("instanceId"),
            state=data.get("state"),
            public_ip=data.get("publicIp"),
            policy_ids=list(data.get("policyIds", [])),
        )


@dataclass(frozen=True)
class CallbackContext:
    """
    Resumable snapshot handed back to the next invocation.

    A new instance is built for every step; nothing is merged in place.
    ``captured_policy_ids`` distinguishes ``None`` (not captured yet) from
    an empty list (captured, nothing attached).
    """

    retries_remaining: int
    observed_instance: Optional[ObservedInstance] = None
    captured_policy_ids: Optional[List[str]] = None

    def __post_init__(self):
        if self.retries_remaining < 0:
            raise ValueError(
                f"retries_remaining must not be negative: {self.retries_remaining}"
            )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"retriesRemaining": self.retries_remaining}
        if self.observed_instance is not None:
            data["observedInstance"] = self.observed_instance.to_dict()
        if self.captured_policy_ids is not None:
            data["capturedPolicyIds"] = list(self.captured_policy_ids)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallbackContext":
        if "retriesRemaining" not in data:
            raise ValueError("callbackContext is missing retriesRemaining")

        observed = data.get("observedInstance")
        captured = data.get("capturedPolicyIds")
        return cls(
            retries_remaining=int(data["retriesRemaining"]),
            observed_instance=(
                ObservedInstance.from_dict(observed) if observed is not None else None
            ),
            captured_policy_ids=list(captured) if captured is not None else None,
        )


@dataclass
class ProgressEvent:
    """Outcome of a single handler invocation."""

    status: OperationStatus
    resource_model: Optional[ResourceModel] = None
    callback_context: Optional[CallbackContext] = None
    callback_delay_seconds: int = 0
    error_code: Optional[HandlerErrorCode] = None
    message: Optional[str] = None

    @classmethod
    def in_progress(
        cls,
        model: ResourceModel,
        context: CallbackContext,
        callback_delay_seconds: int = 0,
    ) -> "ProgressEvent":
        return cls(
            status=OperationStatus.IN_PROGRESS,
            resource_model=model,
            callback_context=context,
            callback_delay_seconds=callback_delay_seconds,
        )

    @classmethod
    def success(cls, model: ResourceModel) -> "ProgressEvent":
        return cls(status=OperationStatus.SUCCESS, resource_model=model)

    @classmethod
    def failed(
        cls,
        error_code: HandlerErrorCode,
        message: Optional[str] = None,
        model: Optional[ResourceModel] = None,
    ) -> "ProgressEvent":
        return cls(
            status=OperationStatus.FAILED,
            resource_model=model,
            error_code=error_code,
            message=message,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status.value,
            "callbackDelaySeconds": self.callback_delay_seconds,
        }
        if self.resource_model is not None:
            data["resourceModel"] = self.resource_model.to_dict()
        if self.callback_context is not None:
            data["callbackContext"] = self.callback_context.to_dict()
        if self.error_code is not None:
            data["errorCode"] = self.error_code.value
        if self.message:
            data["message"] = self.message
        return data
