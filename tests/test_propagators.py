"""Tests for W3C trace context and baggage propagation."""

import unittest

from opentelemetry.context import Context

from tracelet.context import (
    CompositePropagator,
    TraceContextPropagator,
    W3CBaggagePropagator,
    clear_baggage,
    extract,
    extract_trace_context,
    format_traceparent,
    format_tracestate,
    get_all_baggage,
    get_baggage,
    get_current_span,
    inject,
    parse_traceparent,
    parse_tracestate,
    remove_baggage,
    set_baggage,
    set_span_in_context,
    use_span,
)
from tracelet.exporter import InMemorySpanExporter
from tracelet.instrumentation import extract_parent_context, inject_http_headers, start_server_span
from tracelet.processors import SimpleSpanProcessor
from tracelet.tracer import (
    NonRecordingSpan,
    SpanContext,
    SpanKind,
    TraceFlags,
    TracerProvider,
    TraceState,
)

TRACE_ID_HEX = "4bf92f3577b34da6a3ce929d0e0e4736"
SPAN_ID_HEX = "00f067aa0ba902b7"
TRACEPARENT = f"00-{TRACE_ID_HEX}-{SPAN_ID_HEX}-01"


class TestTraceparentFormat(unittest.TestCase):

    def test_parse_valid(self):
        ctx = parse_traceparent(TRACEPARENT)
        self.assertEqual(ctx.trace_id, int(TRACE_ID_HEX, 16))
        self.assertEqual(ctx.span_id, int(SPAN_ID_HEX, 16))
        self.assertTrue(ctx.sampled)
        self.assertTrue(ctx.is_remote)

    def test_format_matches_header(self):
        self.assertEqual(format_traceparent(parse_traceparent(TRACEPARENT)), TRACEPARENT)

    def test_rejects_malformed(self):
        for value in (
            "bogus-value",
            "",
            f"01-{TRACE_ID_HEX}-{SPAN_ID_HEX}-01",
            f"ff-{TRACE_ID_HEX}-{SPAN_ID_HEX}-01",
            f"00-{'0' * 32}-{SPAN_ID_HEX}-01",
            f"00-{TRACE_ID_HEX}-{'0' * 16}-01",
            f"00-{TRACE_ID_HEX.upper()}-{SPAN_ID_HEX}-01",
            f"00-{TRACE_ID_HEX}-{SPAN_ID_HEX}-01-extra",
            f"00-{TRACE_ID_HEX[:-1]}-{SPAN_ID_HEX}-01",
        ):
            self.assertIsNone(parse_traceparent(value), value)

    def test_tracestate_helpers(self):
        state = parse_tracestate("rojo=00f067aa0ba902b7,congo=t61rcWkgMzE")
        self.assertEqual(list(state.keys()), ["rojo", "congo"])
        self.assertEqual(format_tracestate(state), "rojo=00f067aa0ba902b7,congo=t61rcWkgMzE")
        self.assertEqual(len(parse_tracestate("not a member")), 0)
        self.assertEqual(format_tracestate({"a": "1", "b": "2"}), "a=1,b=2")


class TestTraceContextPropagator(unittest.TestCase):

    def setUp(self):
        self.propagator = TraceContextPropagator()
        self.exporter = InMemorySpanExporter()
        self.provider = TracerProvider(shutdown_on_exit=False)
        self.provider.add_span_processor(SimpleSpanProcessor(self.exporter))
        self.tracer = self.provider.get_tracer("test")

    def tearDown(self):
        self.provider.shutdown()

    def test_inject_extract_round_trip(self):
        """Extracted context equals the injected one, marked remote."""
        span = self.tracer.start_span("client")
        carrier = {}
        self.propagator.inject(carrier, set_span_in_context(span))
        extracted = get_current_span(self.propagator.extract(carrier)).get_span_context()
        self.assertEqual(extracted.trace_id, span.context.trace_id)
        self.assertEqual(extracted.span_id, span.context.span_id)
        self.assertEqual(extracted.trace_flags, span.context.trace_flags)
        self.assertTrue(extracted.is_remote)
        span.end()

    def test_child_of_extracted_context(self):
        carrier = {"traceparent": TRACEPARENT}
        child = self.tracer.start_span("server", context=self.propagator.extract(carrier))
        self.assertEqual(child.context.trace_id_hex, TRACE_ID_HEX)
        self.assertEqual(child.parent.span_id, int(SPAN_ID_HEX, 16))
        self.assertTrue(child.parent.is_remote)
        self.assertTrue(child.context.sampled)
        child.end()

    def test_tracestate_round_trip(self):
        state = TraceState([("vendor", "abc")])
        span_context = SpanContext(
            trace_id=1, span_id=2, trace_flags=TraceFlags.SAMPLED, trace_state=state
        )
        carrier = {}
        self.propagator.inject(carrier, set_span_in_context(NonRecordingSpan(span_context)))
        self.assertEqual(carrier["tracestate"], "vendor=abc")
        extracted = get_current_span(self.propagator.extract(carrier)).get_span_context()
        self.assertEqual(extracted.trace_state, state)

    def test_bogus_header_leaves_context_unchanged(self):
        """A malformed traceparent returns the input context untouched."""
        context = Context()
        result = self.propagator.extract({"traceparent": "bogus-value"}, context)
        self.assertIs(result, context)
        self.assertIsNone(get_current_span(result))

    def test_multiple_traceparent_values_rejected(self):
        context = Context()
        result = self.propagator.extract({"traceparent": [TRACEPARENT, TRACEPARENT]}, context)
        self.assertIs(result, context)

    def test_header_lookup_is_case_insensitive(self):
        result = self.propagator.extract({"Traceparent": TRACEPARENT})
        self.assertIsNotNone(get_current_span(result))

    def test_malformed_tracestate_keeps_traceparent(self):
        result = self.propagator.extract({"traceparent": TRACEPARENT, "tracestate": "=,="})
        extracted = get_current_span(result).get_span_context()
        self.assertTrue(extracted.is_valid)
        self.assertEqual(len(extracted.trace_state), 0)

    def test_inject_without_span_writes_nothing(self):
        carrier = {}
        self.propagator.inject(carrier, Context())
        self.assertEqual(carrier, {})

    def test_fields(self):
        self.assertEqual(self.propagator.fields, {"traceparent", "tracestate"})


class TestBaggagePropagator(unittest.TestCase):

    def setUp(self):
        self.propagator = W3CBaggagePropagator()

    def test_round_trip(self):
        context = set_baggage("user id", "a b", Context())
        context = set_baggage("tenant", "acme", context)
        carrier = {}
        self.propagator.inject(carrier, context)
        extracted = self.propagator.extract(carrier)
        self.assertEqual(dict(get_all_baggage(extracted)), {"user id": "a b", "tenant": "acme"})

    def test_properties_are_ignored(self):
        extracted = self.propagator.extract({"baggage": "key=value;prop=1, other=2"})
        self.assertEqual(get_baggage("key", extracted), "value")
        self.assertEqual(get_baggage("other", extracted), "2")

    def test_malformed_entries_are_skipped(self):
        extracted = self.propagator.extract({"baggage": "novalue,good=1"})
        self.assertEqual(dict(get_all_baggage(extracted)), {"good": "1"})

    def test_oversized_header_is_ignored(self):
        context = Context()
        header = "k=" + "v" * (W3CBaggagePropagator.MAX_HEADER_LENGTH + 1)
        self.assertIs(self.propagator.extract({"baggage": header}, context), context)

    def test_remove_and_clear(self):
        context = set_baggage("a", "1", Context())
        context = set_baggage("b", "2", context)
        removed = remove_baggage("a", context)
        self.assertEqual(dict(get_all_baggage(removed)), {"b": "2"})
        self.assertEqual(dict(get_all_baggage(context)), {"a": "1", "b": "2"})

        carrier = {}
        self.propagator.inject(carrier, clear_baggage(removed))
        self.assertEqual(carrier, {})


class TestGlobalPropagation(unittest.TestCase):

    def setUp(self):
        self.provider = TracerProvider(shutdown_on_exit=False)
        self.tracer = self.provider.get_tracer("test")

    def tearDown(self):
        self.provider.shutdown()

    def test_composite_carries_span_and_baggage(self):
        span = self.tracer.start_span("op")
        context = set_baggage("k", "v", set_span_in_context(span))
        carrier = {}
        inject(carrier, context)
        self.assertIn("traceparent", carrier)
        self.assertEqual(carrier["baggage"], "k=v")

        extracted = extract(carrier)
        self.assertEqual(get_baggage("k", extracted), "v")
        self.assertEqual(
            get_current_span(extracted).get_span_context().span_id, span.context.span_id
        )
        span.end()

    def test_composite_fields(self):
        composite = CompositePropagator([TraceContextPropagator(), W3CBaggagePropagator()])
        self.assertEqual(composite.fields, {"traceparent", "tracestate", "baggage"})

    def test_inject_uses_current_span(self):
        with self.tracer.start_as_current_span("current") as span:
            headers = inject_http_headers({})
        self.assertEqual(extract_trace_context(headers).span_id, span.context.span_id)

    def test_server_span_helper(self):
        headers = {"traceparent": TRACEPARENT}
        with start_server_span(self.tracer, "GET /", headers) as span:
            self.assertEqual(span.kind, SpanKind.SERVER)
            self.assertEqual(span.parent.span_id, int(SPAN_ID_HEX, 16))

    def test_server_span_without_headers_is_root(self):
        with self.tracer.start_as_current_span("unrelated"):
            span = start_server_span(self.tracer, "GET /", {})
        self.assertIsNone(span.parent)
        span.end()

    def test_extract_parent_context_bogus(self):
        self.assertIsNone(get_current_span(extract_parent_context({"traceparent": "bogus"})))
