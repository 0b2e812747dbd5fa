"""
REST gateway for Compute Engine instances and VPC firewall rules (v1 API).
"""

import logging
import re
import time
from typing import Dict, List, Optional

import google.auth
import requests
from google.auth.transport.requests import AuthorizedSession

from gateway import GatewayError, NetworkInterfaceSpec, PortRange
from models import ObservedInstance

logger = logging.getLogger(__name__)

API_BASE = "https://compute.googleapis.com/compute/v1"
SELF_LINK_PREFIX = re.compile(r"^https://[a-z.]+googleapis\.com/compute/v1/")

# Compute Engine status -> lifecycle label used by the flows
STATE_LABELS = {
    "PROVISIONING": "pending",
    "STAGING": "pending",
    "REPAIRING": "pending",
    "RUNNING": "running",
    "STOPPING": "stopping",
    "SUSPENDING": "stopping",
    "TERMINATED": "stopped",
    "SUSPENDED": "stopped",
}
SHUTTING_DOWN_STATE = "shutting-down"

# Prefix on the description of every firewall rule this package creates
MANAGED_RULE_MARKER = "[site-instance-handlers]"


def _resource_name(value: str) -> str:
    """Turn an arbitrary string into a valid Compute Engine resource name."""
    name = re.sub(r"[^a-z0-9-]+", "-", value.lower()).strip("-")
    if not name or not name[0].isalpha():
        name = f"site-{name}".rstrip("-")
    if len(name) > 63:
        # keep the tail, which carries any uniqueness suffix
        name = name[:26].rstrip("-") + "-" + name[-36:].lstrip("-")
    return name


def _label_value(value: str) -> str:
    return re.sub(r"[^a-z0-9_-]+", "-", value.lower())[:63]


class ComputeRestClient:
    """REST client implementing the resource gateway on Compute Engine."""

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        project_id: str,
        zone: str,
        credentials=None,
        timeout_s: int = 60,
        max_retries: int = 5,
        base_delay: float = 2.0,
        max_operation_waits: int = 10,
    ):
        """
        Initialize the Compute Engine REST client.

        Args:
            project_id: GCP project ID
            zone: Zone the instances live in (e.g. 'europe-west2-a')
            credentials: Optional google.auth credentials; application
                default credentials are used when omitted
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff
            max_operation_waits: Number of operation wait calls before giving up
        """
        self.project_id = project_id
        self.zone = zone
        self.region = zone.rsplit("-", 1)[0]
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_operation_waits = max_operation_waits

        if credentials is None:
            credentials, _ = google.auth.default(
                scopes=["https://www.googleapis.com/auth/cloud-platform"]
            )
        self.session = AuthorizedSession(credentials)

    def _url(self, path: str) -> str:
        """Construct full API URL from path."""
        return f"{API_BASE}/{path.lstrip('/')}"

    def _project_path(self, path: str) -> str:
        return f"projects/{self.project_id}/{path.lstrip('/')}"

    def _request_with_retry(self, method: str, url: str, **kwargs) -> dict:
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            url: Request URL
            **kwargs: Additional request parameters

        Returns:
            Dictionary with 'response' and 'status_code' keys

        Raises:
            GatewayError: If max retries exceeded
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = self.session.request(
                    method.upper(), url, timeout=self.timeout_s, **kwargs
                )

                if resp.status_code in self.RETRYABLE_STATUS_CODES:
                    delay = self._calculate_delay(attempt, resp)
                    error_info = self._error_message(resp)
                    logger.warning(
                        f"Retryable error {resp.status_code} ({error_info}), attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                    )
                    last_error = (
                        f"HTTP {resp.status_code}: {error_info or resp.text[:200]}"
                    )
                    time.sleep(delay)
                    continue

                return {"response": resp, "status_code": resp.status_code}

            except requests.exceptions.RequestException as e:
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                last_error = str(e)
                time.sleep(delay)

        raise GatewayError(f"Max retries exceeded. Last error: {last_error}")

    @staticmethod
    def _error_message(resp) -> str:
        try:
            return resp.json().get("error", {}).get("message", "")
        except ValueError:
            return ""

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 60.0)

    def _wait_operation(self, op: Dict, scope: str = "global") -> Dict:
        """
        Block until an operation is DONE.

        Args:
            op: Operation resource returned by an insert/patch/delete call
            scope: "global" or "zones/<zone>"

        Raises:
            GatewayError: If the operation failed or did not finish in time
        """
        for _ in range(self.max_operation_waits):
            if op.get("status") == "DONE":
                break
            url = self._url(
                self._project_path(f"{scope}/operations/{op['name']}/wait")
            )
            result = self._request_with_retry("POST", url)
            resp = result["response"]
            if resp.status_code != 200:
                raise GatewayError(
                    f"Wait for operation {op['name']} failed ({resp.status_code}): {resp.text}"
                )
            op = resp.json()
        else:
            raise GatewayError(f"Operation {op.get('name')} did not complete")

        if "error" in op:
            errors = op["error"].get("errors", [])
            detail = "; ".join(e.get("message", "") for e in errors) or str(op["error"])
            raise GatewayError(f"Operation {op.get('name')} failed: {detail}")
        return op

    def _subnet_path(self, subnet_id: str) -> str:
        if "/" in subnet_id:
            return SELF_LINK_PREFIX.sub("", subnet_id)
        return self._project_path(f"regions/{self.region}/subnetworks/{subnet_id}")

    def _managed_policy_ids(self, tags: List[str]) -> List[str]:
        """
        Keep the network tags that name an ingress rule created by this package.

        Instances may also carry tags for rules managed elsewhere (e.g.
        'http-server'); those are never reported as policy ids.

        Raises:
            GatewayError: If API call fails
        """
        policy_ids = []
        for tag in tags:
            url = self._url(self._project_path(f"global/firewalls/{tag}"))
            result = self._request_with_retry("GET", url)
            resp = result["response"]
            if resp.status_code == 404:
                continue
            if resp.status_code != 200:
                raise GatewayError(
                    f"Get firewall {tag} failed ({resp.status_code}): {resp.text}"
                )
            rule = resp.json()
            if (
                rule.get("direction") == "INGRESS"
                and rule.get("targetTags") == [tag]
                and str(rule.get("description", "")).startswith(MANAGED_RULE_MARKER)
            ):
                policy_ids.append(tag)
            else:
                logger.debug(f"Ignoring tag {tag}: not a managed ingress rule")
        return policy_ids

    def _to_observed(self, data: Dict) -> ObservedInstance:
        status = str(data.get("status", "")).upper()
        public_ip = None
        for nic in data.get("networkInterfaces", []):
            for access in nic.get("accessConfigs", []):
                if access.get("natIP"):
                    public_ip = access["natIP"]
                    break
            if public_ip:
                break

        return ObservedInstance(
            instance_id=data.get("name"),
            state=STATE_LABELS.get(status, status.lower() or None),
            public_ip=public_ip,
            policy_ids=self._managed_policy_ids(data.get("tags", {}).get("items", [])),
        )

    def resolve_network(self, subnet_id: str) -> Optional[str]:
        """
        Find the VPC network that owns a subnetwork.

        Args:
            subnet_id: Subnetwork name (in the client's region) or resource path

        Returns:
            Network self link, or None if the subnetwork does not exist

        Raises:
            GatewayError: If API call fails
        """
        url = self._url(self._subnet_path(subnet_id))
        result = self._request_with_retry("GET", url)
        resp = result["response"]
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise GatewayError(
                f"Get subnetwork failed ({resp.status_code}): {resp.text}"
            )
        return resp.json().get("network")

    def create_ingress_policy(self, name: str, description: str, network: str) -> str:
        """
        Create a disabled ingress firewall rule targeting instances tagged ``name``.

        Returns:
            Firewall rule name, used as the policy id

        Raises:
            GatewayError: If API call fails
        """
        name = _resource_name(name)
        url = self._url(self._project_path("global/firewalls"))
        body = {
            "name": name,
            "description": f"{MANAGED_RULE_MARKER} {description}",
            "network": network,
            "direction": "INGRESS",
            "disabled": True,
            "targetTags": [name],
            "allowed": [{"IPProtocol": "tcp"}],
        }
        result = self._request_with_retry("POST", url, json=body)
        resp = result["response"]
        if resp.status_code == 409:
            logger.info(f"Firewall rule {name} already exists")
            return name
        if resp.status_code not in (200, 201):
            raise GatewayError(
                f"Create firewall failed ({resp.status_code}): {resp.text}"
            )
        self._wait_operation(resp.json())
        return name

    def authorize_ingress(self, policy_id: str, port_ranges: List[PortRange]) -> None:
        """
        Open the given port ranges on a firewall rule and enable it.

        Raises:
            GatewayError: If API call fails
        """
        allowed: Dict[str, List[str]] = {}
        for pr in port_ranges:
            ports = (
                str(pr.from_port)
                if pr.from_port == pr.to_port
                else f"{pr.from_port}-{pr.to_port}"
            )
            allowed.setdefault(pr.protocol, []).append(ports)

        body = {
            "allowed": [
                {"IPProtocol": protocol, "ports": ports}
                for protocol, ports in allowed.items()
            ],
            "sourceRanges": sorted({pr.cidr for pr in port_ranges}),
            "disabled": False,
        }
        url = self._url(self._project_path(f"global/firewalls/{policy_id}"))
        result = self._request_with_retry("PATCH", url, json=body)
        resp = result["response"]
        if resp.status_code not in (200, 201):
            raise GatewayError(
                f"Authorize ingress failed ({resp.status_code}): {resp.text}"
            )
        self._wait_operation(resp.json())

    def delete_policy(self, policy_id: str) -> None:
        """
        Delete a firewall rule. A rule that is already gone counts as deleted.

        Raises:
            GatewayError: If API call fails
        """
        url = self._url(self._project_path(f"global/firewalls/{policy_id}"))
        result = self._request_with_retry("DELETE", url)
        resp = result["response"]
        if resp.status_code == 404:
            logger.info(f"Firewall rule {policy_id} already deleted")
            return
        if resp.status_code not in (200, 202):
            raise GatewayError(
                f"Delete firewall failed ({resp.status_code}): {resp.text}"
            )
        self._wait_operation(resp.json())

    def create_instance(
        self,
        image: str,
        machine_type: str,
        interface: NetworkInterfaceSpec,
        tags: Dict[str, str],
    ) -> ObservedInstance:
        """
        Insert an instance. The instance name is derived from the ``Name`` tag,
        so a retried create finds the existing instance instead of duplicating it.

        Returns:
            ObservedInstance in the 'pending' state

        Raises:
            GatewayError: If API call fails or the insert operation reports an error
        """
        name = _resource_name(tags.get("Name", ""))
        nic: Dict = {"subnetwork": self._subnet_path(interface.subnet_id)}
        if interface.associate_public_ip:
            nic["accessConfigs"] = [{"type": "ONE_TO_ONE_NAT", "name": "External NAT"}]

        body = {
            "name": name,
            "machineType": f"zones/{self.zone}/machineTypes/{machine_type}",
            "disks": [
                {
                    "boot": True,
                    "autoDelete": True,
                    "initializeParams": {"sourceImage": image},
                }
            ],
            "networkInterfaces": [nic],
            "tags": {"items": list(interface.policy_ids)},
            "labels": {k.lower(): _label_value(v) for k, v in tags.items()},
        }

        url = self._url(self._project_path(f"zones/{self.zone}/instances"))
        result = self._request_with_retry("POST", url, json=body)
        resp = result["response"]
        if resp.status_code == 409:
            logger.info(f"Instance {name} already exists")
            existing = self.describe_instance(name)
            if existing is not None:
                return existing
        elif resp.status_code not in (200, 201, 202):
            raise GatewayError(
                f"Create instance failed ({resp.status_code}): {resp.text}"
            )
        else:
            self._wait_operation(resp.json(), scope=f"zones/{self.zone}")

        return ObservedInstance(
            instance_id=name,
            state="pending",
            policy_ids=list(interface.policy_ids),
        )

    def describe_instance(self, instance_id: str) -> Optional[ObservedInstance]:
        """
        Get the current state of an instance.

        Returns:
            ObservedInstance, or None if the instance does not exist

        Raises:
            GatewayError: If API call fails
        """
        url = self._url(self._project_path(f"zones/{self.zone}/instances/{instance_id}"))
        result = self._request_with_retry("GET", url)
        resp = result["response"]
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise GatewayError(f"Get instance failed ({resp.status_code}): {resp.text}")
        return self._to_observed(resp.json())

    def terminate_instance(self, instance_id: str) -> Optional[ObservedInstance]:
        """
        Delete an instance.

        Returns:
            ObservedInstance carrying only the id and new state, or None if
            the instance does not exist

        Raises:
            GatewayError: If API call fails
        """
        url = self._url(self._project_path(f"zones/{self.zone}/instances/{instance_id}"))
        result = self._request_with_retry("DELETE", url)
        resp = result["response"]
        if resp.status_code == 404:
            return None
        if resp.status_code not in (200, 202):
            raise GatewayError(
                f"Delete instance failed ({resp.status_code}): {resp.text}"
            )
        return ObservedInstance(instance_id=instance_id, state=SHUTTING_DOWN_STATE)
