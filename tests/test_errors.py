"""Error taxonomy: messages, metadata accessors and retriability."""

from __future__ import annotations

from ClusterTransport import errors
from ClusterTransport.connection import Result
from ClusterTransport.events import RequestMeta


def _result(status: int = 404, body: bytes = b"{}") -> Result:
    return Result(status_code=status, headers={"x-a": "1"}, body=body, node_id="node-a")


def test_default_messages():
    assert str(errors.TimeoutError()) == "Request timed out"
    assert str(errors.ConnectionError()) == "Connection Error"
    assert str(errors.RequestAbortedError()) == "Request aborted"
    assert "not able to find a usable Connection" in str(errors.NoLivingConnectionsError())


def test_everything_is_a_transport_error():
    for cls in (
        errors.ConfigurationError,
        errors.SerializationError,
        errors.DeserializationError,
        errors.ConnectionError,
        errors.TimeoutError,
        errors.RequestAbortedError,
        errors.NoLivingConnectionsError,
    ):
        assert issubclass(cls, errors.TransportError)
    assert issubclass(errors.ResponseError, errors.TransportError)


def test_response_error_uses_error_type_from_body():
    body = {"error": {"type": "index_not_found_exception"}, "status": 404}
    exc = errors.ResponseError(_result(), body=body)
    assert exc.message == "index_not_found_exception"
    assert exc.status_code == 404
    assert exc.headers == {"x-a": "1"}
    assert exc.node_id == "node-a"


def test_response_error_generic_message_without_error_type():
    exc = errors.ResponseError(_result(500, b"boom"), body="boom")
    assert exc.message == "Response Error"
    assert exc.status_code == 500
    assert exc.raw_body == b"boom"


def test_node_id_falls_back_to_meta():
    meta = RequestMeta(request_id=1, name="t", node_id="node-b")
    assert errors.ConnectionError(meta=meta).node_id == "node-b"
    assert errors.ConnectionError().node_id is None


def test_deserialization_error_keeps_payload():
    exc = errors.DeserializationError("bad", data=b"{nope")
    assert exc.data == b"{nope"


def test_retriable_kinds():
    assert errors.is_retriable(errors.ConnectionError())
    assert errors.is_retriable(errors.TimeoutError())
    assert not errors.is_retriable(errors.RequestAbortedError())
    assert not errors.is_retriable(errors.ResponseError(_result()))
    assert not errors.is_retriable(ValueError())
