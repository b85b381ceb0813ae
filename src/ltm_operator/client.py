"""BIG-IP iControl REST client for LTM nodes, pools and pool members.

This module defines the StateStore capability the controllers depend on,
and BigIPClient, its implementation over a synchronous httpx.Client.

ERROR CONTRACT:
- Every remote failure raises StoreError carrying the device's message text
- HTTP 404 raises ResourceNotFoundError (a StoreError)
- Node deletion conflicts arrive as StoreError whose message contains
  "referenced by a member of pool '/<partition>/<pool>'"; the deletion
  controller depends on that text being passed through unchanged

PARTITIONS:
Responses that omit the partition (or return it empty) are normalized to
the configured default partition here, so every read path agrees.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from .models import DEFAULT_PARTITION, Node, Pool, normalize_partition

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

LTM_NODE_PATH = "/mgmt/tm/ltm/node"
LTM_POOL_PATH = "/mgmt/tm/ltm/pool"

DEFAULT_TIMEOUT_SECONDS = 30.0


class StoreError(Exception):
    """Raised when a call to the load-balancer management API fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ResourceNotFoundError(StoreError):
    """Raised when the addressed resource does not exist (HTTP 404)."""

    pass


@runtime_checkable
class StateStore(Protocol):
    """Remote operations the controllers are allowed to issue."""

    def create_node(self, name: str, partition: str, address: str) -> None: ...

    def get_node(self, name: str, partition: str) -> Node | None: ...

    def modify_node(self, name: str, partition: str, node: Node) -> None: ...

    def delete_node(self, name: str, partition: str) -> None: ...

    def create_pool(self, name: str, partition: str) -> None: ...

    def get_pool(self, name: str, partition: str) -> Pool | None: ...

    def modify_pool(self, name: str, partition: str, pool: Pool) -> None: ...

    def delete_pool(self, name: str, partition: str) -> None: ...

    def pool_members(self, pool_name: str, partition: str) -> list[str]: ...

    def add_pool_member(self, pool_name: str, partition: str, member: str) -> None: ...

    def delete_pool_member(self, pool_name: str, partition: str, member: str) -> None: ...


def _full_name(name: str, partition: str) -> str:
    """iControl REST path segment for a partitioned object: ``~Common~name``."""
    return f"~{partition}~{name}"


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def _from_yes_no(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("yes", "true", "enabled")


def _error_message(response: httpx.Response) -> str:
    """Extract the device's error text from a failed response."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])

    text = response.text.strip()
    if text:
        return text
    return f"HTTP {response.status_code} from {response.request.method} {response.request.url.path}"


class BigIPClient:
    """Synchronous iControl REST client.

    Receives either a pre-configured httpx.Client (base_url set to the
    device) or builds one from host and credentials.

    Example:
        with BigIPClient.from_config(config) as client:
            client.create_node("web01", "Common", "10.0.0.10")
            members = client.pool_members("web", "Common")
    """

    def __init__(
        self,
        http: httpx.Client,
        *,
        default_partition: str = DEFAULT_PARTITION,
    ) -> None:
        self._http = http
        self._default_partition = default_partition

    @classmethod
    def connect(
        cls,
        base_url: str,
        username: str,
        password: str,
        *,
        verify_tls: bool = True,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        default_partition: str = DEFAULT_PARTITION,
    ) -> BigIPClient:
        """Build a client with basic auth against ``base_url``."""
        http = httpx.Client(
            base_url=base_url,
            auth=httpx.BasicAuth(username, password),
            verify=verify_tls,
            timeout=timeout_seconds,
            headers={"Content-Type": "application/json"},
        )
        return cls(http, default_partition=default_partition)

    @classmethod
    def from_config(cls, config: Config) -> BigIPClient:
        """Build a client from a validated Config."""
        return cls.connect(
            config.base_url,
            config.username,
            config.password,
            verify_tls=config.verify_tls,
            timeout_seconds=config.timeout_seconds,
            default_partition=config.default_partition,
        )

    @property
    def default_partition(self) -> str:
        return self._default_partition

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> BigIPClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> httpx.Response:
        """Issue one request and translate failures into StoreError."""
        try:
            response = self._http.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {path} failed: {e}") from e

        if response.is_success:
            return response

        message = _error_message(response)
        logger.debug(
            "iControl REST request failed",
            extra={"method": method, "path": path, "status_code": response.status_code},
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            raise ResourceNotFoundError(message, status_code=response.status_code)
        raise StoreError(message, status_code=response.status_code)

    def _get_json(self, path: str) -> dict[str, Any] | None:
        try:
            response = self._request("GET", path)
        except ResourceNotFoundError:
            return None
        body = response.json()
        if not isinstance(body, dict):
            raise StoreError(f"Unexpected response body from GET {path}")
        return body

    def _partition(self, partition: str | None) -> str:
        return normalize_partition(partition, self._default_partition)

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def _node_path(self, name: str, partition: str) -> str:
        return f"{LTM_NODE_PATH}/{_full_name(name, self._partition(partition))}"

    def create_node(self, name: str, partition: str, address: str) -> None:
        self._request(
            "POST",
            LTM_NODE_PATH,
            json={"name": name, "partition": self._partition(partition), "address": address},
        )

    def get_node(self, name: str, partition: str) -> Node | None:
        body = self._get_json(self._node_path(name, partition))
        if body is None:
            return None
        return Node(
            name=body.get("name", name),
            partition=self._partition(body.get("partition")),
            address=body.get("address", ""),
        )

    def modify_node(self, name: str, partition: str, node: Node) -> None:
        self._request(
            "PUT",
            self._node_path(name, partition),
            json={"name": node.name, "partition": self._partition(node.partition), "address": node.address},
        )

    def delete_node(self, name: str, partition: str) -> None:
        self._request("DELETE", self._node_path(name, partition))

    # -------------------------------------------------------------------------
    # Pools
    # -------------------------------------------------------------------------

    def _pool_path(self, name: str, partition: str) -> str:
        return f"{LTM_POOL_PATH}/{_full_name(name, self._partition(partition))}"

    def create_pool(self, name: str, partition: str) -> None:
        self._request("POST", LTM_POOL_PATH, json={"name": name, "partition": self._partition(partition)})

    def get_pool(self, name: str, partition: str) -> Pool | None:
        body = self._get_json(self._pool_path(name, partition))
        if body is None:
            return None
        return Pool(
            name=body.get("name", name),
            partition=self._partition(body.get("partition")),
            allow_nat=_from_yes_no(body.get("allowNat")),
            allow_snat=_from_yes_no(body.get("allowSnat")),
            load_balancing_mode=body.get("loadBalancingMode") or "round-robin",
            monitor=(body.get("monitor") or "").strip(),
        )

    def modify_pool(self, name: str, partition: str, pool: Pool) -> None:
        self._request(
            "PUT",
            self._pool_path(name, partition),
            json={
                "name": pool.name,
                "partition": self._partition(pool.partition),
                "allowNat": _yes_no(pool.allow_nat),
                "allowSnat": _yes_no(pool.allow_snat),
                "loadBalancingMode": pool.load_balancing_mode,
                "monitor": pool.monitor,
            },
        )

    def delete_pool(self, name: str, partition: str) -> None:
        self._request("DELETE", self._pool_path(name, partition))

    # -------------------------------------------------------------------------
    # Pool Members
    # -------------------------------------------------------------------------

    def pool_members(self, pool_name: str, partition: str) -> list[str]:
        """List member references (``node:port``) of a pool."""
        response = self._request("GET", f"{self._pool_path(pool_name, partition)}/members")
        body = response.json()
        items = body.get("items", []) if isinstance(body, dict) else []
        return [item["name"] for item in items if isinstance(item, dict) and item.get("name")]

    def add_pool_member(self, pool_name: str, partition: str, member: str) -> None:
        partition = self._partition(partition)
        self._request(
            "POST",
            f"{self._pool_path(pool_name, partition)}/members",
            json={"name": member, "partition": partition},
        )

    def delete_pool_member(self, pool_name: str, partition: str, member: str) -> None:
        partition = self._partition(partition)
        self._request(
            "DELETE",
            f"{self._pool_path(pool_name, partition)}/members/{_full_name(member, partition)}",
        )
