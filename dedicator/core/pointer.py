"""JSON Pointer (RFC 6901) helpers for building patch paths."""

from __future__ import annotations


def escape_segment(segment: str) -> str:
    # "~" must be escaped before "/", otherwise the "~" of "~1" gets re-escaped.
    return segment.replace("~", "~0").replace("/", "~1")


def join_pointer(*segments: object) -> str:
    """Join raw segments into a pointer, escaping each: ("spec", "nodeSelector", "a/b") -> /spec/nodeSelector/a~1b."""
    return "".join("/" + escape_segment(str(s)) for s in segments)
