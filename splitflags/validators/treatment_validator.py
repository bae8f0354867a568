# splitflags/validators/treatment_validator.py
"""
Validator for /treatments/ requests using JSON Schema.

The TreatmentRequest schema is compiled into a Draft 7 validator at import
time. Rejections name the offending field so API callers can fix the body.
"""


from pathlib import Path
import json
from typing import Any
from jsonschema import Draft7Validator
from jsonschema.exceptions import best_match
from splitflags.errors.handlers import BadRequest


SCHEMA_PATH = (
    Path(__file__).resolve().parent.parent / "schemas" / "TreatmentRequest.schema.json"
)

with SCHEMA_PATH.open("r", encoding="utf-8") as f:
    TREATMENT_REQUEST_SCHEMA = json.load(f)

_VALIDATOR = Draft7Validator(TREATMENT_REQUEST_SCHEMA)


def validate_treatment_payload(payload: Any) -> None:
    """
    Check a POST /treatments/ body.

    Raises:
        BadRequest: If payload is not an object or violates the schema; the
            detail carries the path of the most relevant failing field.
    """
    if not isinstance(payload, dict):
        raise BadRequest("Payload must be a JSON object.")

    error = best_match(_VALIDATOR.iter_errors(payload))
    if error is not None:
        where = ".".join(str(part) for part in error.absolute_path) or "body"
        raise BadRequest(f"Invalid TreatmentRequest at {where}: {error.message}")
