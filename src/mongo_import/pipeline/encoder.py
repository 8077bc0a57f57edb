"""
Envelope encoder: document -> Message.

The value schema is one shared constant, so every message on a topic carries
the same field names, types and order.
"""

from __future__ import annotations

from typing import Any, Literal, Mapping

from bson import ObjectId, json_util

from .types import Message

JsonMode = Literal["relaxed", "canonical", "legacy"]

JSON_OPTIONS = {
    "relaxed": json_util.RELAXED_JSON_OPTIONS,
    "canonical": json_util.CANONICAL_JSON_OPTIONS,
    "legacy": json_util.LEGACY_JSON_OPTIONS,
}

INSERT_OP = "i"

KEY_SCHEMA: dict[str, Any] = {"type": "string", "optional": True}

VALUE_FIELDS: tuple[tuple[str, str], ...] = (
    ("ts", "int32"),
    ("inc", "int32"),
    ("id", "string"),
    ("database", "string"),
    ("op", "string"),
    ("object", "string"),
)


def value_schema(topic: str) -> dict[str, Any]:
    return {
        "type": "struct",
        "optional": False,
        "name": topic,
        "fields": [{"field": name, "type": kind, "optional": True} for name, kind in VALUE_FIELDS],
    }


def document_id_text(doc_id: Any) -> str:
    # ObjectId's str() is its 24-char hex form
    return str(doc_id)


def document_timestamp(doc_id: Any) -> int | None:
    """Creation time embedded in an ObjectId, as unix seconds."""
    if isinstance(doc_id, ObjectId):
        return int(doc_id.generation_time.timestamp())
    return None


def encode_document(
    document: Mapping[str, Any],
    topic: str,
    database: str,
    *,
    json_mode: JsonMode = "relaxed",
    namespace: str = "",
    offset: int = 0,
) -> Message:
    """Wrap a document in the key/value envelopes for `topic`.

    `database` is the namespace label (`db_collection`). The document must
    carry an `_id`; a missing one raises KeyError. `namespace` and `offset`
    (documents read so far in that collection, this one included) ride along
    for checkpointing and are not part of the wire format.
    """
    doc_id = document["_id"]
    id_text = document_id_text(doc_id)

    key = {"schema": KEY_SCHEMA, "payload": id_text}
    value = {
        "schema": value_schema(topic),
        "payload": {
            "id": id_text,
            "ts": document_timestamp(doc_id),
            "inc": 0,
            "database": database,
            "op": INSERT_OP,
            "object": json_util.dumps(document, json_options=JSON_OPTIONS[json_mode]),
        },
    }
    return Message(
        topic=topic,
        key=key,
        value=value,
        namespace=namespace,
        source_id=doc_id,
        offset=offset,
    )
