import base64
import json

import pytest

from errors import IntentTooLargeError, MissingBookingDataError
from gateway.intent_codec import (
    CHUNK_KEY_PREFIX,
    NOTE_VALUE_LIMIT,
    decode_intent,
    encode_intent,
    encode_payload,
    split_payload,
)
from schemas.booking import BookingIntent


def _long_intent(intent, name_length):
    data = intent.to_wire()
    data["customer"]["name"] = "A" * name_length
    return BookingIntent.model_validate(data)


def test_short_payload_is_a_single_envelope():
    [only] = split_payload("QUJD")
    assert json.loads(only) == {
        "version": 1,
        "totalChunks": 1,
        "chunkIndex": 0,
        "payloadBase64": "QUJD",
    }


def test_intent_notes_are_tagged_envelopes(intent):
    notes = encode_intent(intent)
    envelopes = [json.loads(notes[f"{CHUNK_KEY_PREFIX}{i}"]) for i in range(len(notes))]
    assert [e["chunkIndex"] for e in envelopes] == list(range(len(notes)))
    assert {e["totalChunks"] for e in envelopes} == {len(notes)}
    assert decode_intent(notes) == intent


def test_large_intent_chunks_within_limit_and_round_trips(intent):
    big = _long_intent(intent, 700)
    notes = encode_intent(big)
    assert len(notes) > 1
    assert all(len(v) <= NOTE_VALUE_LIMIT for v in notes.values())
    assert decode_intent(notes) == big


def test_reassembly_follows_chunk_index_not_key_order(intent):
    big = _long_intent(intent, 500)
    notes = encode_intent(big)
    shuffled = dict(reversed(list(notes.items())))
    assert decode_intent(shuffled) == big


@pytest.mark.parametrize("limit", [80, 100, 150, 256])
def test_split_respects_any_workable_limit(intent, limit):
    payload = encode_payload(_long_intent(intent, 300))
    chunks = split_payload(payload, limit)
    assert all(len(c) <= limit for c in chunks)
    assert "".join(json.loads(c)["payloadBase64"] for c in chunks) == payload


def test_limit_too_small_for_envelope():
    with pytest.raises(IntentTooLargeError):
        split_payload("abc", limit=20)


def test_legacy_single_field(intent):
    raw = json.dumps(intent.to_wire()).encode()
    notes = {"booking_data": base64.b64encode(raw).decode(), "source": "web"}
    assert decode_intent(notes) == intent


def test_legacy_chunked_fields(intent):
    payload = base64.b64encode(json.dumps(intent.to_wire()).encode()).decode()
    notes = {
        "booking_data_chunks": "2",
        "booking_data_0": payload[:50],
        "booking_data_1": payload[50:],
    }
    assert decode_intent(notes) == intent


def test_legacy_slot_keys_accepted(intent):
    data = intent.to_wire()
    data["slots"] = [{"start_time": "18:00", "end_time": "18:30"}]
    raw = base64.b64encode(json.dumps(data).encode()).decode()
    assert decode_intent({"booking_data": raw}).slots == intent.slots


@pytest.mark.parametrize("notes", [
    {},
    [],
    None,
    {"receipt_note": "hello"},
    {"booking_data": "!!!not-base64!!!"},
    {"booking_data": base64.b64encode(b"{not json").decode()},
    {"booking_data": base64.b64encode(b'{"customer": {}}').decode()},
    {"booking_data_chunks": "2", "booking_data_0": "abcd"},
    {"booking_intent_0": "not an envelope"},
])
def test_undecodable_notes_raise_missing_booking_data(notes):
    with pytest.raises(MissingBookingDataError):
        decode_intent(notes)


def test_missing_chunk_detected(intent):
    notes = encode_intent(_long_intent(intent, 700))
    notes.pop(f"{CHUNK_KEY_PREFIX}1")
    with pytest.raises(MissingBookingDataError, match="incomplete"):
        decode_intent(notes)
