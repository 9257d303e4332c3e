from __future__ import annotations

import httpx
import pytest

from tracesensor.shared.exceptions import UnsupportedCarrierError
from tracesensor.tracing.context import SpanContext, derive_context, new_root_context
from tracesensor.tracing.propagation import (
    CarrierFormat,
    ExtractError,
    HTTPHeadersCarrier,
    Propagator,
    RPCMetadataCarrier,
)


@pytest.fixture
def propagator() -> Propagator:
    return Propagator()


@pytest.fixture
def context() -> SpanContext:
    return (
        SpanContext(trace_id=0x1234, span_id=0xABCD, parent_id=0x99, sampled=True)
        .with_baggage_item("tenant", "acme")
        .with_baggage_item("note", "a b/c=d")
    )


class TestInject:
    def test_http_headers(self, propagator, context):
        headers: dict[str, str] = {}
        propagator.inject(context, HTTPHeadersCarrier(headers))

        assert headers["trace-id"] == "1234"
        assert headers["span-id"] == "abcd"
        assert headers["level"] == "1"
        assert headers["baggage-tenant"] == "acme"
        assert headers["baggage-note"] == "a%20b%2Fc%3Dd"

    def test_unsampled_level(self, propagator):
        headers: dict[str, str] = {}
        propagator.inject(SpanContext(trace_id=1, span_id=1), HTTPHeadersCarrier(headers))
        assert headers["level"] == "0"

    def test_repeated_inject_does_not_duplicate(self, propagator, context):
        metadata: list[tuple[str, str]] = [("user-agent", "grpc-python")]
        carrier = RPCMetadataCarrier(metadata)

        propagator.inject(context, carrier)
        propagator.inject(context, carrier)

        keys = [key for key, _ in metadata]
        assert keys.count("trace-id") == 1
        assert keys.count("span-id") == 1
        assert keys.count("baggage-tenant") == 1
        assert ("user-agent", "grpc-python") in metadata

    def test_replaces_existing_keys_case_insensitively(self, propagator, context):
        headers = {"Trace-Id": "dead", "SPAN-ID": "beef", "Level": "0", "Accept": "*/*"}
        propagator.inject(context, HTTPHeadersCarrier(headers))

        assert headers == {
            "Accept": "*/*",
            "trace-id": "1234",
            "span-id": "abcd",
            "level": "1",
            "baggage-tenant": "acme",
            "baggage-note": "a%20b%2Fc%3Dd",
        }

    def test_stale_baggage_is_removed(self, propagator):
        headers = {"Baggage-Old": "x"}
        propagator.inject(SpanContext(trace_id=1, span_id=2), HTTPHeadersCarrier(headers))
        assert "Baggage-Old" not in headers
        assert not any(key.startswith("baggage-") for key in headers)

    def test_httpx_headers(self, propagator, context):
        headers = httpx.Headers({"Content-Type": "application/json"})
        propagator.inject(context, HTTPHeadersCarrier(headers))

        assert headers["trace-id"] == "1234"
        assert headers["content-type"] == "application/json"

    @pytest.mark.parametrize("carrier", [{}, [], "trace-id=1", None])
    def test_unsupported_carrier_raises(self, propagator, context, carrier):
        with pytest.raises(UnsupportedCarrierError):
            propagator.inject(context, carrier)


class TestExtract:
    def test_round_trip_http(self, propagator, context):
        carrier = HTTPHeadersCarrier()
        propagator.inject(context, carrier)

        extracted, error = propagator.extract(carrier)

        assert error is None
        assert extracted is not None
        assert extracted.trace_id == context.trace_id
        assert extracted.span_id == context.span_id
        assert extracted.sampled == context.sampled
        assert extracted.baggage == context.baggage
        assert extracted.parent_id == 0

    def test_round_trip_rpc(self, propagator, context):
        carrier = RPCMetadataCarrier()
        propagator.inject(context, carrier)

        result = propagator.extract(carrier)

        assert result.ok
        assert result.context is not None
        assert result.context.trace_id == context.trace_id
        assert result.context.baggage == context.baggage

    def test_case_insensitive_keys(self, propagator):
        carrier = HTTPHeadersCarrier(
            {"TRACE-ID": "a", "Span-Id": "B", "LEVEL": "1", "Baggage-User": "x"}
        )
        extracted, error = propagator.extract(carrier)

        assert error is None
        assert extracted == SpanContext(
            trace_id=0xA, span_id=0xB, sampled=True, baggage={"user": "x"}
        )

    def test_missing_level_is_unsampled(self, propagator):
        carrier = HTTPHeadersCarrier({"trace-id": "1", "span-id": "2"})
        extracted, error = propagator.extract(carrier)
        assert error is None
        assert extracted is not None
        assert extracted.sampled is False

    def test_not_found(self, propagator):
        result = propagator.extract(HTTPHeadersCarrier({"accept": "*/*"}))
        assert result.context is None
        assert result.error is ExtractError.NOT_FOUND
        assert not result.ok

    def test_baggage_alone_is_not_found(self, propagator):
        result = propagator.extract(HTTPHeadersCarrier({"baggage-user": "x", "level": "1"}))
        assert result.error is ExtractError.NOT_FOUND

    @pytest.mark.parametrize(
        "headers",
        [
            {"trace-id": "1"},
            {"span-id": "1"},
            {"trace-id": "zz", "span-id": "1"},
            {"trace-id": "1", "span-id": ""},
            {"trace-id": "0", "span-id": "1"},
            {"trace-id": "1" * 17, "span-id": "1"},
            {"trace-id": "1", "span-id": "2", "level": "2"},
            {"trace-id": "1", "span-id": "2", "level": "yes"},
        ],
    )
    def test_malformed(self, propagator, headers):
        result = propagator.extract(HTTPHeadersCarrier(headers))
        assert result.context is None
        assert result.error is ExtractError.MALFORMED

    @pytest.mark.parametrize("carrier", [{"trace-id": "1", "span-id": "2"}, [], object()])
    def test_unsupported_carrier(self, propagator, carrier):
        result = propagator.extract(carrier)
        assert result.context is None
        assert result.error is ExtractError.UNSUPPORTED_CARRIER

    def test_rpc_binary_entries_are_skipped(self, propagator):
        carrier = RPCMetadataCarrier(
            [("trace-id", "1"), ("span-id", "2"), ("trace-bin", b"\x00\x01")]
        )
        extracted, error = propagator.extract(carrier)
        assert error is None
        assert extracted is not None
        assert extracted.trace_id == 1

    def test_derived_server_context_points_at_remote_span(self, propagator):
        client = derive_context(new_root_context())
        carrier = HTTPHeadersCarrier()
        propagator.inject(client, carrier)

        remote, _ = propagator.extract(carrier)
        assert remote is not None
        server = derive_context(remote)

        assert server.trace_id == client.trace_id
        assert server.parent_id == client.span_id


class TestCarriers:
    def test_formats(self):
        assert HTTPHeadersCarrier.format is CarrierFormat.HTTP_HEADERS
        assert RPCMetadataCarrier.format is CarrierFormat.RPC_METADATA

    def test_rpc_metadata_modified_in_place(self):
        metadata: list[tuple[str, str]] = [("Trace-Id", "1"), ("x", "y")]
        carrier = RPCMetadataCarrier(metadata)

        carrier.set("trace-id", "2")

        assert metadata == [("x", "y"), ("trace-id", "2")]
        assert carrier.get("TRACE-ID") == "2"
        assert carrier.get("missing") is None

    def test_http_headers_default_dict(self):
        carrier = HTTPHeadersCarrier()
        carrier.set("level", "1")
        assert carrier.headers == {"level": "1"}
        carrier.remove("level")
        assert carrier.headers == {}
