"""
Booking Intent Codec
====================
Embeds a BookingIntent in gateway order notes and gets it back out.

Razorpay notes are a flat str→str map with at most 15 keys and 256
characters per value. The intent is serialized to compact JSON, base64
encoded, and split across one or more notes. Every note value is a
self-describing envelope:

    {"version":1,"totalChunks":N,"chunkIndex":i,"payloadBase64":"..."}

Reassembly sorts envelopes on chunkIndex and never trusts key names, so a
gateway that reorders or renames keys cannot corrupt the payload.

Orders created by older clients use the legacy layout (`booking_data`, or
`booking_data_chunks` plus `booking_data_<i>`); decode_intent reads both.
"""

import base64
import json
import math
from typing import Any, Dict, List, Mapping

from errors import IntentTooLargeError, MissingBookingDataError
from schemas.booking import BookingIntent

NOTE_VALUE_LIMIT = 256
MAX_NOTES = 15

ENVELOPE_VERSION = 1
CHUNK_KEY_PREFIX = "booking_intent_"

LEGACY_SINGLE_KEY = "booking_data"
LEGACY_COUNT_KEY = "booking_data_chunks"
LEGACY_CHUNK_PREFIX = "booking_data_"


# =============================================================================
# ENCODE
# =============================================================================

def encode_payload(intent: BookingIntent) -> str:
    """BookingIntent -> compact JSON -> base64 text"""
    raw = json.dumps(intent.to_wire(), separators=(",", ":"), ensure_ascii=False)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _envelope(total: int, index: int, part: str) -> str:
    return json.dumps(
        {
            "version": ENVELOPE_VERSION,
            "totalChunks": total,
            "chunkIndex": index,
            "payloadBase64": part,
        },
        separators=(",", ":"),
    )


def split_payload(payload: str, limit: int = NOTE_VALUE_LIMIT) -> List[str]:
    """Split base64 text into envelopes no longer than `limit` characters"""
    total = 1
    while True:
        # Envelope overhead grows with the digit count of totalChunks
        capacity = limit - len(_envelope(total, total - 1, ""))
        if capacity <= 0:
            raise IntentTooLargeError(
                f"Note value limit {limit} is too small for a chunk envelope"
            )
        needed = max(1, math.ceil(len(payload) / capacity))
        if needed <= total:
            total = needed
            break
        total = needed

    return [
        _envelope(total, index, payload[index * capacity:(index + 1) * capacity])
        for index in range(total)
    ]


def encode_intent(intent: BookingIntent, limit: int = NOTE_VALUE_LIMIT) -> Dict[str, str]:
    """Notes fields carrying the intent, keyed booking_intent_<i>"""
    envelopes = split_payload(encode_payload(intent), limit)
    return {f"{CHUNK_KEY_PREFIX}{index}": value for index, value in enumerate(envelopes)}


# =============================================================================
# DECODE
# =============================================================================

def _parse_envelope(key: str, value: Any) -> Dict[str, Any]:
    try:
        envelope = json.loads(value)
    except (TypeError, ValueError):
        raise MissingBookingDataError(f"Booking data chunk {key} is not a valid envelope") from None

    if not isinstance(envelope, dict):
        raise MissingBookingDataError(f"Booking data chunk {key} is not a valid envelope")
    if envelope.get("version") != ENVELOPE_VERSION:
        raise MissingBookingDataError(
            f"Unsupported booking data version in {key}: {envelope.get('version')!r}"
        )
    if not isinstance(envelope.get("totalChunks"), int) or not isinstance(envelope.get("chunkIndex"), int):
        raise MissingBookingDataError(f"Booking data chunk {key} has no chunk position")
    if not isinstance(envelope.get("payloadBase64"), str):
        raise MissingBookingDataError(f"Booking data chunk {key} has no payload")
    return envelope


def _reassemble(notes: Mapping[str, Any]) -> str:
    envelopes = [
        _parse_envelope(key, value)
        for key, value in notes.items()
        if key.startswith(CHUNK_KEY_PREFIX)
    ]
    totals = {e["totalChunks"] for e in envelopes}
    if len(totals) != 1:
        raise MissingBookingDataError("Booking data chunks disagree on totalChunks")

    total = totals.pop()
    envelopes.sort(key=lambda e: e["chunkIndex"])
    indexes = [e["chunkIndex"] for e in envelopes]
    if indexes != list(range(total)):
        raise MissingBookingDataError(
            f"Booking data chunks incomplete: have {indexes}, expected {total}"
        )
    return "".join(e["payloadBase64"] for e in envelopes)


def _reassemble_legacy(notes: Mapping[str, Any]) -> str:
    try:
        count = int(notes[LEGACY_COUNT_KEY])
    except (TypeError, ValueError):
        raise MissingBookingDataError(
            f"Invalid {LEGACY_COUNT_KEY}: {notes[LEGACY_COUNT_KEY]!r}"
        ) from None

    parts = []
    for index in range(count):
        part = notes.get(f"{LEGACY_CHUNK_PREFIX}{index}")
        if not part:
            raise MissingBookingDataError(f"Missing booking data chunk {index} of {count}")
        parts.append(part)
    return "".join(parts)


def _parse_payload(payload: str) -> BookingIntent:
    try:
        raw = base64.b64decode(payload, validate=True).decode("utf-8")
        return BookingIntent.model_validate(json.loads(raw))
    except ValueError as e:
        # binascii.Error, UnicodeDecodeError, JSONDecodeError and pydantic's
        # ValidationError are all ValueErrors
        raise MissingBookingDataError(f"Booking data is corrupt: {e}") from e


def decode_intent(notes: Any) -> BookingIntent:
    """
    Recover the BookingIntent from order notes.

    Raises MissingBookingDataError for every failure: absent fields, missing
    chunks, corrupt base64, invalid JSON or a payload that is not an intent.
    """
    # Razorpay returns notes as [] when an order has none
    if not isinstance(notes, Mapping) or not notes:
        raise MissingBookingDataError("No booking data found in order notes")

    if any(key.startswith(CHUNK_KEY_PREFIX) for key in notes):
        payload = _reassemble(notes)
    elif notes.get(LEGACY_SINGLE_KEY):
        payload = notes[LEGACY_SINGLE_KEY]
    elif LEGACY_COUNT_KEY in notes:
        payload = _reassemble_legacy(notes)
    else:
        raise MissingBookingDataError("No booking data found in order notes")

    if not isinstance(payload, str) or not payload:
        raise MissingBookingDataError("No booking data found in order notes")
    return _parse_payload(payload)
