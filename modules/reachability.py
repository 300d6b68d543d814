"""
Reachability module for cl-vitality

Amboss online ping: proves to api.amboss.space that the node is up and
controls its key by signing the current timestamp and submitting it
through the HealthCheck GraphQL mutation.
"""

import json
import time
from datetime import datetime, timezone
from typing import Optional

import requests

from .rpc_gateway import RpcGateway


AMBOSS_URL = "https://api.amboss.space/graphql"
REQUEST_TIMEOUT_SECONDS = 30
HEALTH_CHECK_MUTATION = (
    "mutation HealthCheck($signature: String!, $timestamp: String!) "
    "{ healthCheck(signature: $signature, timestamp: $timestamp) }"
)


class ReachabilityError(Exception):
    """A probe that did not come back with healthCheck == true."""

    def __init__(self, reason: str):
        super().__init__(f"Amboss ping error: {reason}")
        self.reason = reason


def make_timestamp(now: Optional[datetime] = None) -> str:
    """Timestamp in the format Amboss expects, e.g. 2024-05-01T12:00:00+0000."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S%z")


class ReachabilityProber:
    """Signs and submits one health-check ping per probe() call."""

    def __init__(self, gateway: RpcGateway, plugin, session=None, url: str = AMBOSS_URL):
        self.gateway = gateway
        self.plugin = plugin
        self.session = session or requests.Session()
        self.url = url

    def _log(self, message: str, level: str = 'info') -> None:
        self.plugin.log(f"amboss: {message}", level=level)

    def probe(self) -> None:
        """
        Run one ping.

        Raises:
            ReachabilityError: the endpoint did not confirm the ping; reason
                is the raw response body or the transport error
            RpcError: signmessage failed
        """
        start = time.monotonic()
        self._log("Creating amboss ping")

        timestamp = make_timestamp()
        self._log(f"Timestamp: {timestamp}", level='debug')
        signature = self.gateway.sign_message(timestamp)
        self._log(f"Signature: {signature}", level='debug')

        payload = {
            "query": HEALTH_CHECK_MUTATION,
            "variables": {"signature": signature, "timestamp": timestamp},
        }

        self._log("Sending ping...", level='debug')
        try:
            response = self.session.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except requests.exceptions.RequestException as e:
            raise ReachabilityError(str(e)) from e

        body = response.text
        if not health_check_succeeded(body):
            raise ReachabilityError(body)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        self._log(f"Amboss ping succeeded in: {elapsed_ms}ms")


def health_check_succeeded(body: str) -> bool:
    """True only for a JSON body with data.healthCheck == true."""
    try:
        parsed = json.loads(body)
    except ValueError:
        return False
    if not isinstance(parsed, dict):
        return False
    data = parsed.get("data")
    if not isinstance(data, dict):
        return False
    return data.get("healthCheck") is True
