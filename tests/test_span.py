"""Tests for the span data model, tracer and provider."""

import unittest

import pytest

from tracelet.context import get_current_span, use_span
from tracelet.exporter import InMemorySpanExporter
from tracelet.processors import SimpleSpanProcessor
from tracelet.tracer import (
    ALWAYS_OFF,
    INVALID_SPAN_CONTEXT,
    Event,
    Link,
    NonRecordingSpan,
    RandomIdGenerator,
    ReadableSpan,
    SpanContext,
    SpanKind,
    SpanLimits,
    SpanProcessor,
    SpanStatus,
    TraceFlags,
    TracerProvider,
    TraceState,
)


def _make_tracer(sampler=None, limits=None):
    exporter = InMemorySpanExporter()
    provider = TracerProvider(sampler=sampler, span_limits=limits, shutdown_on_exit=False)
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return provider, provider.get_tracer("test"), exporter


class TestSpanLifecycle(unittest.TestCase):
    """Spans record until end() and are frozen afterwards."""

    def setUp(self):
        self.provider, self.tracer, self.exporter = _make_tracer()

    def tearDown(self):
        self.provider.shutdown()

    def test_mutation_after_end_is_ignored(self):
        """Every mutator is a no-op once the span has ended."""
        span = self.tracer.start_span("op")
        span.set_attribute("a", 1)
        span.end()

        span.set_attribute("b", 2)
        span.set_attributes({"c": 3})
        span.add_event("late")
        span.set_status(SpanStatus.ERROR, "late")
        span.update_name("renamed")
        end_time = span.end_time
        span.end()

        self.assertFalse(span.is_recording())
        self.assertEqual(dict(span.attributes), {"a": 1})
        self.assertEqual(span.events, ())
        self.assertEqual(span.status, SpanStatus.UNSET)
        self.assertEqual(span.name, "op")
        self.assertEqual(span.end_time, end_time)

        finished = self.exporter.get_finished_spans()
        self.assertEqual(len(finished), 1)
        self.assertEqual(dict(finished[0].attributes), {"a": 1})

    def test_ok_status_is_final(self):
        """OK cannot be replaced by ERROR."""
        span = self.tracer.start_span("op")
        span.set_status(SpanStatus.OK)
        span.set_status(SpanStatus.ERROR, "boom")
        span.end()
        self.assertEqual(span.status, SpanStatus.OK)
        self.assertIsNone(span.status_description)

    def test_error_keeps_description_and_unset_is_ignored(self):
        span = self.tracer.start_span("op")
        span.set_status(SpanStatus.ERROR, "boom")
        span.set_status(SpanStatus.UNSET)
        span.end()
        self.assertEqual(span.status, SpanStatus.ERROR)
        self.assertEqual(span.status_description, "boom")

    def test_ok_drops_description(self):
        span = self.tracer.start_span("op")
        span.set_status(SpanStatus.OK, "ignored")
        self.assertIsNone(span.status_description)
        span.end()

    def test_record_exception_adds_event_and_sets_error(self):
        span = self.tracer.start_span("op")
        span.record_exception(ValueError("bad input"))
        span.end()
        self.assertEqual(span.status, SpanStatus.ERROR)
        self.assertEqual(span.events[0].name, "exception")
        self.assertEqual(span.events[0].attributes["exception.type"], "ValueError")
        self.assertEqual(span.events[0].attributes["exception.message"], "bad input")

    def test_record_exception_does_not_override_ok(self):
        span = self.tracer.start_span("op")
        span.set_status(SpanStatus.OK)
        span.record_exception(RuntimeError("x"))
        span.end()
        self.assertEqual(span.status, SpanStatus.OK)
        self.assertEqual(len(span.events), 1)

    def test_readable_span_is_snapshot(self):
        span = self.tracer.start_span("op", kind=SpanKind.CLIENT, attributes={"k": "v"})
        span.end()
        readable = self.exporter.get_finished_spans()[0]
        self.assertEqual(readable.name, "op")
        self.assertEqual(readable.kind, SpanKind.CLIENT)
        self.assertEqual(readable.context, span.context)
        self.assertGreaterEqual(readable.duration_ns, 0)
        with self.assertRaises(TypeError):
            readable.attributes["k"] = "other"
        as_dict = readable.to_dict()
        self.assertEqual(as_dict["trace_id"], span.context.trace_id_hex)
        self.assertEqual(as_dict["kind"], "CLIENT")
        self.assertIsNone(as_dict["parent_span_id"])

    def test_default_attributes_are_empty_and_read_only(self):
        context = SpanContext(trace_id=1, span_id=2)
        event = Event(name="e", timestamp=0)
        link = Link(context=context)
        readable = ReadableSpan(name="r", context=context)
        for attributes in (event.attributes, link.attributes, readable.attributes):
            self.assertEqual(dict(attributes), {})
            with self.assertRaises(TypeError):
                attributes["k"] = "v"


class TestSpanLimits(unittest.TestCase):
    """Attributes, events and links are bounded and drops are counted."""

    def test_attribute_limit_drops_new_keys(self):
        provider, tracer, _ = _make_tracer(limits=SpanLimits(max_attributes=2))
        span = tracer.start_span("op")
        span.set_attribute("a", 1)
        span.set_attribute("b", 2)
        span.set_attribute("c", 3)
        span.set_attribute("a", 10)
        span.end()
        self.assertEqual(dict(span.attributes), {"a": 10, "b": 2})
        self.assertEqual(span.dropped_attributes, 1)
        provider.shutdown()

    def test_event_and_link_limits(self):
        provider, tracer, _ = _make_tracer(limits=SpanLimits(max_events=1, max_links=1))
        other = SpanContext(trace_id=1, span_id=2, trace_flags=TraceFlags.SAMPLED)
        span = tracer.start_span("op", links=[other])
        span.add_event("one")
        span.add_event("two")
        span.add_link(SpanContext(trace_id=3, span_id=4))
        span.end()
        self.assertEqual([e.name for e in span.events], ["one"])
        self.assertEqual(span.dropped_events, 1)
        self.assertEqual(len(span.links), 1)
        self.assertEqual(span.dropped_links, 1)
        provider.shutdown()

    def test_attribute_length_truncation(self):
        provider, tracer, _ = _make_tracer(limits=SpanLimits(max_attribute_length=3))
        span = tracer.start_span("op")
        span.set_attribute("s", "abcdef")
        span.set_attribute("seq", ["abcdef", "xy"])
        span.end()
        self.assertEqual(span.attributes["s"], "abc")
        self.assertEqual(span.attributes["seq"], ("abc", "xy"))
        provider.shutdown()

    def test_invalid_attribute_values_are_dropped(self):
        provider, tracer, _ = _make_tracer()
        span = tracer.start_span("op")
        span.set_attribute("obj", {"nested": 1})
        span.set_attribute("mixed", [1, "two"])
        span.set_attribute("", "empty key")
        span.set_attribute("ok", [1, 2, 3])
        span.end()
        self.assertEqual(dict(span.attributes), {"ok": (1, 2, 3)})
        provider.shutdown()

    def test_invalid_links_are_ignored(self):
        provider, tracer, _ = _make_tracer()
        span = tracer.start_span("op")
        span.add_link(INVALID_SPAN_CONTEXT)
        span.end()
        self.assertEqual(span.links, ())
        self.assertEqual(span.dropped_links, 0)
        provider.shutdown()

    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError):
            SpanLimits(max_attributes=-1)


class TestTracer(unittest.TestCase):
    """Parenting, activation and sampling decisions at span start."""

    def setUp(self):
        self.provider, self.tracer, self.exporter = _make_tracer()

    def tearDown(self):
        self.provider.shutdown()

    def test_child_inherits_trace_id_from_current_span(self):
        with self.tracer.start_as_current_span("parent") as parent:
            self.assertIs(get_current_span(), parent)
            with self.tracer.start_as_current_span("child") as child:
                self.assertEqual(child.context.trace_id, parent.context.trace_id)
                self.assertEqual(child.parent.span_id, parent.context.span_id)
                self.assertNotEqual(child.context.span_id, parent.context.span_id)
        self.assertIsNone(get_current_span())
        names = [s.name for s in self.exporter.get_finished_spans()]
        self.assertEqual(names, ["child", "parent"])

    def test_explicit_parent_takes_precedence(self):
        root = self.tracer.start_span("root")
        with self.tracer.start_as_current_span("other"):
            child = self.tracer.start_span("child", parent=root)
        self.assertEqual(child.parent.span_id, root.context.span_id)
        child.end()
        root.end()

    def test_root_span_has_no_parent(self):
        span = self.tracer.start_span("root")
        span.end()
        self.assertIsNone(span.parent)
        self.assertTrue(span.context.is_valid)
        self.assertTrue(span.context.sampled)
        self.assertFalse(span.context.is_remote)

    def test_exception_in_with_block_marks_error(self):
        with pytest.raises(ValueError):
            with self.tracer.start_as_current_span("failing"):
                raise ValueError("boom")
        finished = self.exporter.get_finished_spans()[0]
        self.assertEqual(finished.status, SpanStatus.ERROR)
        self.assertEqual(finished.status_description, "ValueError: boom")
        self.assertEqual(finished.events[0].name, "exception")

    def test_dropped_span_is_non_recording(self):
        provider, tracer, exporter = _make_tracer(sampler=ALWAYS_OFF)
        span = tracer.start_span("dropped")
        self.assertIsInstance(span, NonRecordingSpan)
        self.assertFalse(span.is_recording())
        self.assertTrue(span.context.is_valid)
        self.assertFalse(span.context.sampled)
        span.set_attribute("ignored", True)
        span.end()
        self.assertEqual(exporter.get_finished_spans(), ())
        provider.shutdown()

    def test_children_of_dropped_span_share_trace_id(self):
        provider, tracer, _ = _make_tracer(sampler=ALWAYS_OFF)
        with tracer.start_as_current_span("root") as root:
            child = tracer.start_span("child")
        self.assertEqual(child.context.trace_id, root.context.trace_id)
        provider.shutdown()

    def test_spans_after_provider_shutdown_do_not_record(self):
        self.provider.shutdown()
        span = self.tracer.start_span("late")
        self.assertFalse(span.is_recording())

    def test_get_tracer_is_cached(self):
        self.assertIs(self.provider.get_tracer("test"), self.tracer)
        other = self.provider.get_tracer("test", version="2.0")
        self.assertIsNot(other, self.tracer)
        self.assertEqual(other.instrumentation_scope.version, "2.0")

    def test_resource_from_mapping(self):
        provider = TracerProvider(resource={"service.name": "checkout"}, shutdown_on_exit=False)
        self.assertEqual(provider.resource.attributes["service.name"], "checkout")
        provider.shutdown()

    def test_use_span_activates_existing_span(self):
        span = self.tracer.start_span("background")
        with use_span(span, end_on_exit=True) as active:
            self.assertIs(active, span)
            self.assertIs(get_current_span(), span)
            child = self.tracer.start_span("child")
            child.end()
        self.assertIsNone(get_current_span())
        self.assertFalse(span.is_recording())
        self.assertEqual(child.parent.span_id, span.context.span_id)


class RecordingProcessor(SpanProcessor):
    def __init__(self, label, calls):
        self.label = label
        self.calls = calls

    def on_start(self, span, parent_context=None):
        self.calls.append((self.label, "start"))

    def on_end(self, span):
        self.calls.append((self.label, "end"))


class RaisingProcessor(RecordingProcessor):
    def on_start(self, span, parent_context=None):
        super().on_start(span, parent_context)
        raise RuntimeError("processor bug")

    def on_end(self, span):
        super().on_end(span)
        raise RuntimeError("processor bug")


class TestSpanProcessors(unittest.TestCase):

    def test_registration_order_and_failure_isolation(self):
        calls = []
        exporter = InMemorySpanExporter()
        provider = TracerProvider(shutdown_on_exit=False)
        provider.add_span_processor(RaisingProcessor("broken", calls))
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        provider.add_span_processor(RecordingProcessor("after", calls))

        with self.assertLogs("tracelet.tracer.provider", level="ERROR"):
            provider.get_tracer("test").start_span("op").end()

        self.assertEqual(
            calls,
            [("broken", "start"), ("after", "start"), ("broken", "end"), ("after", "end")],
        )
        self.assertEqual([s.name for s in exporter.get_finished_spans()], ["op"])
        provider.shutdown()


class TestIdentifiers(unittest.TestCase):

    def test_random_ids_are_valid(self):
        generator = RandomIdGenerator()
        for _ in range(100):
            trace_id = generator.generate_trace_id()
            span_id = generator.generate_span_id()
            self.assertTrue(0 < trace_id < 2**128)
            self.assertTrue(0 < span_id < 2**64)

    def test_invalid_span_context(self):
        self.assertFalse(INVALID_SPAN_CONTEXT.is_valid)
        self.assertFalse(SpanContext(trace_id=1, span_id=0).is_valid)
        self.assertTrue(SpanContext(trace_id=1, span_id=1).is_valid)

    def test_hex_formatting(self):
        ctx = SpanContext(trace_id=0xABC, span_id=0x1, trace_flags=TraceFlags.SAMPLED)
        self.assertEqual(ctx.trace_id_hex, "00000000000000000000000000000abc")
        self.assertEqual(ctx.span_id_hex, "0000000000000001")
        self.assertTrue(ctx.sampled)


class TestTraceState(unittest.TestCase):

    def test_add_prepends_and_rejects_duplicates(self):
        state = TraceState().add("a", "1").add("b", "2")
        self.assertEqual(state.to_header(), "b=2,a=1")
        self.assertIs(state.add("a", "3"), state)

    def test_update_moves_entry_to_front(self):
        state = TraceState([("a", "1"), ("b", "2")]).update("b", "3")
        self.assertEqual(list(state.items()), [("b", "3"), ("a", "1")])

    def test_invalid_key_is_ignored(self):
        state = TraceState().add("Invalid Key", "1")
        self.assertEqual(len(state), 0)

    def test_from_header_rejects_duplicates(self):
        state = TraceState.from_header(["a=1,a=2"])
        self.assertEqual(len(state), 0)

    def test_from_header_parses_multiple_headers(self):
        state = TraceState.from_header(["a=1", "b=2, c=3"])
        self.assertEqual(dict(state), {"a": "1", "b": "2", "c": "3"})
