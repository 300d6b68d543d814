"""
Tests for ReachabilityProber - the Amboss online ping.
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests
from pyln.client import RpcError

from modules.reachability import (
    AMBOSS_URL,
    HEALTH_CHECK_MUTATION,
    ReachabilityError,
    ReachabilityProber,
    health_check_succeeded,
    make_timestamp,
)


@pytest.fixture
def gateway():
    gw = MagicMock()
    gw.sign_message.return_value = "zbase-signature"
    return gw


@pytest.fixture
def session():
    s = MagicMock()
    s.post.return_value = MagicMock(text='{"data":{"healthCheck":true}}')
    return s


@pytest.fixture
def prober(gateway, mock_plugin, session):
    return ReachabilityProber(gateway, mock_plugin, session=session)


class TestTimestamp:

    def test_format(self):
        now = datetime(2024, 5, 1, 12, 30, 5, tzinfo=timezone.utc)
        assert make_timestamp(now) == "2024-05-01T12:30:05+0000"

    def test_default_is_utc(self):
        assert make_timestamp().endswith("+0000")


class TestHealthCheckSucceeded:

    @pytest.mark.parametrize("body,expected", [
        ('{"data":{"healthCheck":true}}', True),
        ('{"data":{"healthCheck":false}}', False),
        ('{"data":{"healthCheck":"true"}}', False),
        ('{"data":{}}', False),
        ('{"data":null,"errors":[{"message":"Invalid signature"}]}', False),
        ('[]', False),
        ('<html>502 Bad Gateway</html>', False),
    ])
    def test_only_literal_true_succeeds(self, body, expected):
        assert health_check_succeeded(body) is expected


class TestProbe:

    def test_success(self, prober, gateway, session):
        prober.probe()

        timestamp = gateway.sign_message.call_args.args[0]
        session.post.assert_called_once()
        url = session.post.call_args.args[0]
        payload = session.post.call_args.kwargs["json"]
        assert url == AMBOSS_URL
        assert payload["query"] == HEALTH_CHECK_MUTATION
        assert payload["variables"] == {"signature": "zbase-signature", "timestamp": timestamp}
        assert session.post.call_args.kwargs["timeout"] == 30

    def test_false_reports_full_body(self, prober, session):
        body = json.dumps({"data": {"healthCheck": False}})
        session.post.return_value = MagicMock(text=body)

        with pytest.raises(ReachabilityError) as exc_info:
            prober.probe()

        assert exc_info.value.reason == body
        assert str(exc_info.value) == f"Amboss ping error: {body}"

    def test_transport_error(self, prober, session):
        session.post.side_effect = requests.exceptions.ConnectionError("connection refused")

        with pytest.raises(ReachabilityError) as exc_info:
            prober.probe()

        assert "connection refused" in exc_info.value.reason

    def test_sign_failure_propagates(self, prober, gateway, session):
        gateway.sign_message.side_effect = RpcError("signmessage", {}, {"message": "HSM down"})

        with pytest.raises(RpcError):
            prober.probe()
        session.post.assert_not_called()
