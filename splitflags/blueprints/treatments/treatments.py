"""Runtime evaluation endpoints for SplitFlags.

This blueprint exposes the `/treatments/` API used by client applications
to get the treatment of a split for a given key, evaluated locally
against the last synchronized rule snapshot.
"""

from __future__ import annotations

from typing import Any

from flask import Blueprint, current_app, jsonify, request

from splitflags.validators.treatment_validator import validate_treatment_payload


treatments_bp = Blueprint("treatments_bp", __name__, url_prefix="/treatments")


def _serialize_split(split) -> dict:
    """Serialize a Split into a JSON-safe view.

    Returns:
        dict: Serialized split view.
    """
    return {
        "name": split.name,
        "traffic_type": split.traffic_type_name,
        "killed": split.killed,
        "default_treatment": split.default_treatment,
        "treatments": list(split.treatments()),
        "change_number": split.change_number,
    }


@treatments_bp.post("/")
def post_treatment() -> tuple[Any, int]:
    """Evaluate a split for a key.

    Request JSON body (TreatmentRequest):
        {
            "key": "string",
            "split_name": "string",
            "bucketing_key": "string" (optional),
            "attributes": { ... } (optional)
        }

    Behaviour:
        - Returns 400 when the body does not match the schema.
        - Otherwise always returns 200; unknown splits and evaluation
            problems yield the ``control`` treatment with a label.

    Returns:
        A tuple ``(response, status_code)``.
    """
    payload = request.get_json(silent=True) or {}
    validate_treatment_payload(payload)

    client = current_app.extensions["splitflags"]["client"]
    result = client.get_treatment_with_result(
        key=payload["key"],
        split_name=payload["split_name"],
        attributes=payload.get("attributes"),
        bucketing_key=payload.get("bucketing_key"),
    )

    return (
        jsonify(
            {
                "split_name": payload["split_name"],
                "treatment": result.treatment,
                "label": result.label,
                "change_number": result.change_number,
            }
        ),
        200,
    )


@treatments_bp.get("/splits")
def list_splits() -> tuple[Any, int]:
    """List the splits of the current snapshot, sorted by name.

    Returns:
        tuple: (JSON list of split views, HTTP status code).
    """
    repository = current_app.extensions["splitflags"]["synchronizer"].repository
    snapshot = repository.get()
    if snapshot is None:
        return jsonify([]), 200

    splits = sorted(snapshot.splits.values(), key=lambda s: s.name)
    return jsonify([_serialize_split(s) for s in splits]), 200
