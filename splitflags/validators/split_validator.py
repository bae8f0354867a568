# splitflags/validators/split_validator.py
"""
Validator for raw split definitions received from splitChanges.

The Split JSON Schema is loaded once at import time. A failing entry raises
SplitParseError so the mutator can skip it without dropping the batch.
"""


from pathlib import Path
import json
from jsonschema import Draft7Validator, ValidationError
from splitflags.errors.handlers import SplitParseError

# Resolve schema path
SCHEMA_PATH = (Path(__file__).resolve().parent.parent / "schemas" / "split.schema.json")

# Load schema
with SCHEMA_PATH.open("r", encoding="utf-8") as f:
    SPLIT_SCHEMA = json.load(f)

_VALIDATOR = Draft7Validator(SPLIT_SCHEMA)


def validate_raw_split(payload: dict) -> None:
    """
    Validate one raw split definition against the Split schema.

    Args:
        payload: One element of the ``splits`` array of a splitChanges response.

    Raises:
        SplitParseError: If payload is not an object or violates the schema.
    """
    if not isinstance(payload, dict):
        raise SplitParseError("Split definition must be a JSON object.")

    name = payload.get("name") if isinstance(payload.get("name"), str) else None
    try:
        _VALIDATOR.validate(payload)
    except ValidationError as e:
        msg = getattr(e, "message", None) or str(e)
        raise SplitParseError(f"Invalid Split: {msg}", split_name=name)
