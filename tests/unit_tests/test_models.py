"""
Unit tests for data models.
"""

import unittest

from models import (
    CallbackContext,
    HandlerErrorCode,
    ObservedInstance,
    OperationStatus,
    ProgressEvent,
    ResourceModel,
)


class TestResourceModel(unittest.TestCase):
    """Test ResourceModel data model."""

    def test_with_instance_returns_enriched_copy(self):
        """Test enrichment copies id and address without mutating the input."""
        model = ResourceModel(name="my-site", subnet_id="default")
        enriched = model.with_instance(
            ObservedInstance(instance_id="my-site", state="running", public_ip="1.2.3.4")
        )

        self.assertEqual(enriched.instance_id, "my-site")
        self.assertEqual(enriched.public_ip, "1.2.3.4")
        self.assertEqual(enriched.name, "my-site")
        self.assertIsNone(model.instance_id)

    def test_serialization_omits_unset_fields(self):
        """Test unset identifiers are left out of the JSON shape."""
        model = ResourceModel(name="my-site", subnet_id="default")
        self.assertEqual(model.to_dict(), {"name": "my-site", "subnetId": "default"})
        self.assertEqual(ResourceModel.from_dict(model.to_dict()), model)


class TestCallbackContext(unittest.TestCase):
    """Test CallbackContext snapshot."""

    def test_negative_retries_rejected(self):
        """Test the retry countdown can never be negative."""
        with self.assertRaises(ValueError):
            CallbackContext(retries_remaining=-1)

    def test_snapshot_survives_serialization(self):
        """Test a full snapshot comes back field for field."""
        context = CallbackContext(
            retries_remaining=17,
            observed_instance=ObservedInstance(
                instance_id="my-site",
                state="pending",
                public_ip="1.2.3.4",
                policy_ids=["pol-1"],
            ),
            captured_policy_ids=["pol-1", "pol-2"],
        )

        data = context.to_dict()

        self.assertEqual(
            data,
            {
                "retriesRemaining": 17,
                "observedInstance": {
                    "instanceId": "my-site",
                    "state": "pending",
                    "publicIp": "1.2.3.4",
                    "policyIds": ["pol-1"],
                },
                "capturedPolicyIds": ["pol-1", "pol-2"],
            },
        )
        self.assertEqual(CallbackContext.from_dict(data), context)

    def test_empty_capture_is_distinct_from_absent(self):
        """Test an empty captured list is kept rather than dropped."""
        captured = CallbackContext(retries_remaining=5, captured_policy_ids=[])
        absent = CallbackContext(retries_remaining=5)

        self.assertEqual(captured.to_dict()["capturedPolicyIds"], [])
        self.assertNotIn("capturedPolicyIds", absent.to_dict())
        self.assertEqual(
            CallbackContext.from_dict(captured.to_dict()).captured_policy_ids, []
        )
        self.assertIsNone(
            CallbackContext.from_dict(absent.to_dict()).captured_policy_ids
        )

    def test_missing_retries_rejected(self):
        """Test a snapshot without a retry countdown is invalid."""
        with self.assertRaises(ValueError):
            CallbackContext.from_dict({"capturedPolicyIds": []})


class TestObservedInstance(unittest.TestCase):
    """Test ObservedInstance data model."""

    def test_not_found_keeps_only_identifier(self):
        """Test the not-found value carries the id and nothing else."""
        observed = ObservedInstance.not_found("my-site")
        self.assertEqual(observed.to_dict(), {"instanceId": "my-site"})
        self.assertIsNone(observed.state)


class TestProgressEvent(unittest.TestCase):
    """Test ProgressEvent serialization."""

    def test_in_progress_event(self):
        """Test an in-progress event carries its snapshot."""
        model = ResourceModel(name="my-site", subnet_id="default")
        event = ProgressEvent.in_progress(
            model, CallbackContext(retries_remaining=60), callback_delay_seconds=5
        )

        data = event.to_dict()

        self.assertEqual(data["status"], "IN_PROGRESS")
        self.assertEqual(data["callbackContext"], {"retriesRemaining": 60})
        self.assertEqual(data["callbackDelaySeconds"], 5)
        self.assertNotIn("errorCode", data)

    def test_failed_event(self):
        """Test a failed event carries its classification and no snapshot."""
        event = ProgressEvent.failed(HandlerErrorCode.NOT_FOUND, "gone")

        data = event.to_dict()

        self.assertEqual(event.status, OperationStatus.FAILED)
        self.assertEqual(data["errorCode"], "NotFound")
        self.assertEqual(data["message"], "gone")
        self.assertNotIn("callbackContext", data)
        self.assertNotIn("resourceModel", data)


if __name__ == "__main__":
    unittest.main()
