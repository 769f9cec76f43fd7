"""
In-memory entity sets for the emulated /data service.
Records get an integer "Id" when created without one; keys match on any field.
"""
import itertools
import re

from dynamics_emulator.config import ENTITY_SETS

_records: dict[str, list[dict]] = {}
_ids = itertools.count(1)

SEGMENT_RE = re.compile(r"^(?P<entity>[A-Za-z_][A-Za-z0-9_]*)(?:\((?P<key>.*)\))?$")


def reset() -> None:
    global _ids
    _records.clear()
    _ids = itertools.count(1)


def is_known(entity: str) -> bool:
    return entity in ENTITY_SETS


def split_segment(segment: str) -> tuple[str, dict | None] | None:
    """'Customers(5)' -> ('Customers', {'Id': '5'}); None if the segment isn't an entity reference."""
    match = SEGMENT_RE.match(segment)
    if not match:
        return None
    key = match.group("key")
    return match.group("entity"), (parse_key(key) if key is not None else None)


def parse_key(key: str) -> dict:
    """(5) / ('abc') / (Account='US-001',Area='usmf') -> {field: value-as-string}."""
    parts = [p for p in re.split(r",(?=(?:[^']*'[^']*')*[^']*$)", key) if p]
    result = {}
    for part in parts:
        name, sep, value = part.partition("=")
        if not sep:
            name, value = "Id", part
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == "'":
            value = value[1:-1].replace("''", "'")
        result[name.strip()] = value
    return result


def list_records(entity: str) -> list[dict]:
    return list(_records.get(entity, []))


def find(entity: str, key: dict) -> dict | None:
    for record in _records.get(entity, []):
        if all(str(record.get(name)) == value for name, value in key.items()):
            return record
    return None


def create(entity: str, data: dict) -> dict:
    record = dict(data)
    if "Id" not in record:
        record["Id"] = next(_ids)
    _records.setdefault(entity, []).append(record)
    return record


def replace(entity: str, key: dict, data: dict) -> dict | None:
    record = find(entity, key)
    if record is None:
        return None
    record_id = record.get("Id")
    record.clear()
    record.update(data)
    record["Id"] = record_id
    return record


def update(entity: str, key: dict, data: dict) -> dict | None:
    record = find(entity, key)
    if record is None:
        return None
    record.update({k: v for k, v in data.items() if k != "Id"})
    return record


def delete(entity: str, key: dict) -> bool:
    record = find(entity, key)
    if record is None:
        return False
    _records[entity] = [r for r in _records[entity] if r is not record]
    return True
