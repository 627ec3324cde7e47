"""Queue overflow handling strategies for span buffering."""

from typing import Deque, Optional

from tracelet.tracer.span import ReadableSpan


class DropPolicy:
    """Base policy deciding how to handle span queue overflow."""

    def handle(self, queue: Deque[ReadableSpan], span: ReadableSpan, max_size: int) -> Optional[ReadableSpan]:
        """
        Apply the drop policy. Called with the queue lock held; must not block.

        Returns the span that was discarded (the incoming one or an evicted
        one), or None if nothing was dropped.
        """
        raise NotImplementedError


class DropOldestPolicy(DropPolicy):
    """Drop the oldest span to make room for a new one."""

    def handle(self, queue: Deque[ReadableSpan], span: ReadableSpan, max_size: int) -> Optional[ReadableSpan]:
        dropped = None
        if len(queue) >= max_size and queue:
            dropped = queue.popleft()
        if len(queue) < max_size:
            queue.append(span)
            return dropped
        return span


class DropNewestPolicy(DropPolicy):
    """Drop the incoming span if the queue is full."""

    def handle(self, queue: Deque[ReadableSpan], span: ReadableSpan, max_size: int) -> Optional[ReadableSpan]:
        if len(queue) < max_size:
            queue.append(span)
            return None
        return span


DEFAULT_DROP_POLICY = DropNewestPolicy()
