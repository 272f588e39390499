"""MongoDB document serialization utilities."""

from datetime import datetime

from bson import ObjectId


def serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [serialize_value(v) for v in value]
    if isinstance(value, dict):
        return serialize_doc(value)
    return value


def serialize_doc(doc):
    """Convert a MongoDB document to a JSON-safe dict, dropping _id"""
    if doc is None:
        return None
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    return {key: serialize_value(value) for key, value in doc.items() if key != "_id"}
