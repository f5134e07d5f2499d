"""CORS and JSON response helpers for API handlers."""

import json

from common.errors import ErrorKind

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTERNAL: 500,
}


def jsonResponse(body, statusCode=200):
    """Return a response dict with JSON body and CORS headers for API Gateway."""
    return {
        "statusCode": statusCode,
        "headers": {
            "Content-Type": "application/json",
            "Access-Control-Allow-Origin": "*",
        },
        "body": json.dumps(body) if not isinstance(body, str) else body,
    }


def errorResponse(err):
    """Map a ServiceError to its status code. Internal errors never leak detail."""
    status = STATUS_BY_KIND.get(err.kind, 500)
    if status == 500:
        return jsonResponse({"error": "INTERNAL_ERROR", "message": "Internal server error"}, 500)
    return jsonResponse(err.to_dict(), status)
