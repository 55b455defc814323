"""Trace stream decoding.

Reads the chunked trace stream returned by ``Tracing.end`` and turns it into
``TraceEvent`` records. Chrome normally hands back one JSON document, but
partial or line-oriented payloads are common enough that a newline-delimited
fallback is always attempted before giving up.
"""

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass
class TraceEvent:
    name: str
    cat: str  # category
    ph: str   # phase: B=begin, E=end, X=complete, etc.
    ts: float # raw timestamp, unit inferred per trace
    dur: Optional[float]  # raw duration (for X events)
    pid: int = 0
    tid: int = 0
    args: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict) -> "TraceEvent":
        args = raw.get("args")
        return cls(
            name=str(raw.get("name") or ""),
            cat=str(raw.get("cat") or ""),
            ph=str(raw.get("ph") or ""),
            ts=_as_number(raw.get("ts")) or 0.0,
            dur=_as_number(raw.get("dur")),
            pid=raw.get("pid") or 0,
            tid=raw.get("tid") or 0,
            args=args if isinstance(args, dict) else {},
        )

    @property
    def data(self) -> dict:
        """The ``args.data`` payload most devtools.timeline events carry."""
        data = self.args.get("data")
        return data if isinstance(data, dict) else {}


class TraceStreamReader(Protocol):
    """Anything that can read and close a devtools IO stream."""

    async def read_stream(self, handle: str) -> dict[str, Any]: ...

    async def close_stream(self, handle: str) -> None: ...


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


async def read_trace_stream(reader: TraceStreamReader, handle: str) -> str:
    """Read every chunk of a trace stream until EOF.

    Args:
        reader: Control channel exposing IO.read / IO.close
        handle: Stream handle from Tracing.tracingComplete

    Returns:
        The concatenated payload text
    """
    chunks: list[bytes] = []
    try:
        while True:
            chunk = await reader.read_stream(handle)
            data = chunk.get("data") or ""
            if data:
                # Multi-byte characters may straddle chunks; decode after EOF
                if chunk.get("base64Encoded"):
                    chunks.append(base64.b64decode(data))
                else:
                    chunks.append(data.encode("utf-8"))
            if chunk.get("eof"):
                break
    finally:
        try:
            await reader.close_stream(handle)
        except Exception as e:
            logger.debug(f"Failed to close trace stream {handle}: {e}")

    return b"".join(chunks).decode("utf-8", errors="replace")


def _events_from_document(document: Any) -> Optional[list[dict]]:
    """Pull the raw event list out of a parsed trace document, if it is one."""
    if isinstance(document, list):
        return [e for e in document if isinstance(e, dict)]
    if isinstance(document, dict) and isinstance(document.get("traceEvents"), list):
        return [e for e in document["traceEvents"] if isinstance(e, dict)]
    return None


def _events_from_line(parsed: Any) -> list[dict]:
    """Interpret one NDJSON line; unknown shapes yield no events."""
    events = _events_from_document(parsed)
    if events is not None:
        return events
    if not isinstance(parsed, dict):
        return []

    # Tracing.dataCollected shape: {"value": [...]}
    if isinstance(parsed.get("value"), list):
        return [e for e in parsed["value"] if isinstance(e, dict)]
    if isinstance(parsed.get("event"), dict):
        return [parsed["event"]]
    if "name" in parsed or "ph" in parsed:
        return [parsed]
    return []


def parse_trace_text(text: str) -> list[TraceEvent]:
    """Parse a trace payload into events.

    Tries a strict JSON parse first, then falls back to line-by-line parsing.
    Never raises; an unusable payload yields an empty list.

    Args:
        text: Raw trace payload

    Returns:
        Decoded trace events in payload order
    """
    if not text or not text.strip():
        return []

    raw_events: Optional[list[dict]] = None
    try:
        raw_events = _events_from_document(json.loads(text))
    except ValueError:
        raw_events = None

    if raw_events is None:
        raw_events = []
        skipped = 0
        for line in text.splitlines():
            line = line.strip().rstrip(",")
            if not line or line in ("[", "]", "{", "}"):
                continue
            try:
                parsed = json.loads(line)
            except ValueError:
                skipped += 1
                continue
            raw_events.extend(_events_from_line(parsed))
        if skipped:
            logger.debug(f"Skipped {skipped} unparsable trace lines")

    return [TraceEvent.from_dict(e) for e in raw_events]


async def decode_trace_stream(reader: TraceStreamReader, handle: Optional[str]) -> list[TraceEvent]:
    """Read a trace stream to completion and decode it.

    Args:
        reader: Control channel exposing IO.read / IO.close
        handle: Stream handle, or None if tracing produced no stream

    Returns:
        Decoded trace events (empty if nothing could be read)
    """
    if not handle:
        logger.warning("Tracing completed without a stream handle")
        return []

    text = await read_trace_stream(reader, handle)
    events = parse_trace_text(text)
    logger.info(f"Decoded {len(events)} trace events from {len(text):,} bytes")
    return events
