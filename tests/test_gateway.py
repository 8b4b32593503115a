import threading

import pytest

from clockin.core.errors import GatewayTimeout, UploadError
from clockin.data.gateway import TimeoutGateway, with_timeout


def test_with_timeout_only_wraps_positive_values(gateway):
    assert with_timeout(gateway, 0) is gateway
    assert with_timeout(gateway, None) is gateway
    assert isinstance(with_timeout(gateway, 2.0), TimeoutGateway)


def test_calls_pass_through(gateway):
    wrapped = TimeoutGateway(gateway, timeout=2.0)

    wrapped.upload_image("E1/1.jpg", b"data")

    assert wrapped.query_attendance_exists("E1", "2024-03-05") is False
    assert gateway.images == {"E1/1.jpg": b"data"}
    wrapped.shutdown()


def test_errors_propagate(gateway):
    gateway.fail["upload"] = UploadError("bucket full")
    wrapped = TimeoutGateway(gateway, timeout=2.0)

    with pytest.raises(UploadError, match="bucket full"):
        wrapped.upload_image("E1/1.jpg", b"data")
    wrapped.shutdown()


def test_slow_call_times_out(gateway):
    release = threading.Event()
    gateway.upload_hook = lambda: release.wait(timeout=5)
    wrapped = TimeoutGateway(gateway, timeout=0.05)

    with pytest.raises(GatewayTimeout):
        wrapped.upload_image("E1/1.jpg", b"data")

    release.set()
    wrapped.shutdown()
