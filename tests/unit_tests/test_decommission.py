"""
Unit tests for the decommission flow.
"""

import unittest
from unittest.mock import MagicMock, call, patch

from config import HandlerConfig
from decommission import (
    TIMED_OUT_MESSAGE,
    DecommissionFlow,
    DecommissionState,
    classify,
)
from gateway import GatewayError
from models import (
    CallbackContext,
    HandlerErrorCode,
    ObservedInstance,
    OperationStatus,
    ResourceModel,
)


class TestClassify(unittest.TestCase):
    """Test decommission step selection."""

    def test_states_in_order(self):
        """Test each snapshot shape maps to its step."""
        cases = [
            (CallbackContext(retries_remaining=0), DecommissionState.EXHAUSTED),
            (CallbackContext(retries_remaining=5), DecommissionState.CAPTURE_GROUPS),
            (
                CallbackContext(retries_remaining=5, captured_policy_ids=[]),
                DecommissionState.TERMINATE,
            ),
            (
                CallbackContext(
                    retries_remaining=5,
                    captured_policy_ids=["pol-1"],
                    observed_instance=ObservedInstance("i-1", "terminated"),
                ),
                DecommissionState.CLEANUP,
            ),
            (
                CallbackContext(
                    retries_remaining=5,
                    captured_policy_ids=["pol-1"],
                    observed_instance=ObservedInstance("i-1", "shutting-down"),
                ),
                DecommissionState.WAITING,
            ),
        ]
        for context, expected in cases:
            self.assertEqual(classify(context), expected)


class TestDecommissionFlow(unittest.TestCase):
    """Test DecommissionFlow steps against a mocked gateway."""

    def setUp(self):
        """Set up test fixtures."""
        self.gateway = MagicMock()
        self.config = HandlerConfig(project_id="test-project", zone="europe-west2-a")
        self.flow = DecommissionFlow(self.gateway, self.config)
        self.model = ResourceModel(
            name="my-site",
            subnet_id="default",
            instance_id="my-site",
            public_ip="34.1.2.3",
        )

    def test_exhausted_budget_fails(self):
        """Test zero retries is fatal with the delete timeout message."""
        for observed in (None, ObservedInstance("my-site", "terminated")):
            event = self.flow.handle(
                self.model,
                CallbackContext(
                    retries_remaining=0,
                    observed_instance=observed,
                    captured_policy_ids=["pol-1"],
                ),
            )
            self.assertEqual(event.status, OperationStatus.FAILED)
            self.assertEqual(
                event.error_code, HandlerErrorCode.GENERAL_SERVICE_EXCEPTION
            )
            self.assertEqual(event.message, TIMED_OUT_MESSAGE)

        self.assertEqual(self.gateway.method_calls, [])

    def test_already_terminated_is_not_found(self):
        """Test a terminated target fails with NotFound and no model or snapshot."""
        self.gateway.describe_instance.return_value = ObservedInstance(
            "my-site", "terminated", policy_ids=["pol-1"]
        )

        event = self.flow.handle(self.model, None)

        self.assertEqual(event.status, OperationStatus.FAILED)
        self.assertEqual(event.error_code, HandlerErrorCode.NOT_FOUND)
        self.assertIsNone(event.resource_model)
        self.assertIsNone(event.callback_context)
        self.gateway.terminate_instance.assert_not_called()

    def test_missing_instance_is_not_found(self):
        """Test a target the provider no longer knows about fails with NotFound."""
        self.gateway.describe_instance.return_value = None

        event = self.flow.handle(self.model, None)

        self.assertEqual(event.error_code, HandlerErrorCode.NOT_FOUND)
        self.assertIsNone(event.callback_context)

    def test_captures_policy_ids(self):
        """Test the attached policies are checkpointed before termination."""
        self.gateway.describe_instance.return_value = ObservedInstance(
            "my-site", "running", "34.1.2.3", policy_ids=["pol-1", "pol-2"]
        )

        event = self.flow.handle(
            self.model, CallbackContext(retries_remaining=7)
        )

        self.assertEqual(event.status, OperationStatus.IN_PROGRESS)
        context = event.callback_context
        self.assertEqual(context.captured_policy_ids, ["pol-1", "pol-2"])
        self.assertEqual(context.retries_remaining, 60)
        self.assertIsNone(context.observed_instance)
        self.gateway.describe_instance.assert_called_once_with("my-site")
        self.gateway.terminate_instance.assert_not_called()

    def test_captures_empty_policy_list(self):
        """Test an instance without policies still records a captured list."""
        self.gateway.describe_instance.return_value = ObservedInstance(
            "my-site", "running"
        )

        event = self.flow.handle(self.model, None)

        self.assertEqual(event.callback_context.captured_policy_ids, [])

    def test_terminate_records_only_id_and_state(self):
        """Test termination issues one call and keeps no stale fields."""
        self.gateway.terminate_instance.return_value = ObservedInstance(
            "my-site", "shutting-down", "34.1.2.3", policy_ids=["pol-1"]
        )

        event = self.flow.handle(
            self.model,
            CallbackContext(retries_remaining=3, captured_policy_ids=["pol-1"]),
        )

        self.gateway.terminate_instance.assert_called_once_with("my-site")
        self.assertEqual(len(self.gateway.method_calls), 1)
        observed = event.callback_context.observed_instance
        self.assertEqual(
            observed, ObservedInstance(instance_id="my-site", state="shutting-down")
        )
        self.assertEqual(event.callback_context.captured_policy_ids, ["pol-1"])
        self.assertEqual(event.callback_context.retries_remaining, 60)

    def test_cleanup_deletes_every_policy(self):
        """Test a terminated instance deletes each captured policy and succeeds."""
        event = self.flow.handle(
            self.model,
            CallbackContext(
                retries_remaining=3,
                captured_policy_ids=["pol-1", "pol-2"],
                observed_instance=ObservedInstance("my-site", "terminated"),
            ),
        )

        self.assertEqual(event.status, OperationStatus.SUCCESS)
        self.assertIsNone(event.callback_context)
        self.assertEqual(
            self.gateway.delete_policy.call_args_list, [call("pol-1"), call("pol-2")]
        )

    def test_cleanup_continues_after_failure(self):
        """Test one failed policy delete does not stop the others."""
        self.gateway.delete_policy.side_effect = [GatewayError("in use"), None]

        event = self.flow.handle(
            self.model,
            CallbackContext(
                retries_remaining=3,
                captured_policy_ids=["pol-1", "pol-2"],
                observed_instance=ObservedInstance("my-site", "terminated"),
            ),
        )

        self.assertEqual(event.status, OperationStatus.SUCCESS)
        self.assertEqual(self.gateway.delete_policy.call_count, 2)

    @patch("decommission.time.sleep")
    def test_waiting_carries_policies_forward(self, mock_sleep):
        """Test waiting re-describes, decrements and keeps the captured ids."""
        refreshed = ObservedInstance("my-site", "shutting-down")
        self.gateway.describe_instance.return_value = refreshed

        event = self.flow.handle(
            self.model,
            CallbackContext(
                retries_remaining=30,
                captured_policy_ids=["pol-1"],
                observed_instance=ObservedInstance("my-site", "shutting-down"),
            ),
        )

        self.assertEqual(event.status, OperationStatus.IN_PROGRESS)
        self.assertEqual(event.callback_context.retries_remaining, 29)
        self.assertEqual(event.callback_context.observed_instance, refreshed)
        self.assertEqual(event.callback_context.captured_policy_ids, ["pol-1"])
        self.gateway.describe_instance.assert_called_once_with("my-site")
        mock_sleep.assert_called_once_with(5)

    @patch("decommission.time.sleep")
    def test_purged_instance_counts_as_terminated(self, mock_sleep):
        """Test an instance that disappears after terminate moves on to cleanup."""
        self.gateway.describe_instance.return_value = None

        event = self.flow.handle(
            self.model,
            CallbackContext(
                retries_remaining=30,
                captured_policy_ids=["pol-1"],
                observed_instance=ObservedInstance("my-site", "shutting-down"),
            ),
        )

        self.assertEqual(
            event.callback_context.observed_instance.state, "terminated"
        )
        self.assertEqual(
            classify(event.callback_context), DecommissionState.CLEANUP
        )

    @patch("decommission.time.sleep")
    def test_runs_to_completion(self, mock_sleep):
        """Test chaining snapshots from capture through cleanup."""
        self.gateway.describe_instance.side_effect = [
            ObservedInstance("my-site", "running", policy_ids=["pol-1"]),
            ObservedInstance("my-site", "terminated"),
        ]
        self.gateway.terminate_instance.return_value = ObservedInstance(
            "my-site", "shutting-down"
        )

        event = self.flow.handle(self.model, None)
        steps = 1
        while event.status is OperationStatus.IN_PROGRESS:
            event = self.flow.handle(event.resource_model, event.callback_context)
            steps += 1

        self.assertEqual(event.status, OperationStatus.SUCCESS)
        self.assertEqual(steps, 4)
        self.gateway.delete_policy.assert_called_once_with("pol-1")


if __name__ == "__main__":
    unittest.main()
