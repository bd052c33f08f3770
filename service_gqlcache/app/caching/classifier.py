"""
GraphQL operation classification.

Only distinguishes mutations from everything else. Anything that cannot be
read as a GraphQL-over-HTTP payload is treated as a query, so a malformed
body is cached rather than blocked; the backend reports the real error.

Known limitation: a document with a comment or directive in front of the
``mutation`` keyword is classified as a query.
"""

import json
import re
from enum import Enum
from typing import Union

from shared.logging import get_logger


logger = get_logger("gqlcache.classifier")

_WHITESPACE = re.compile(r"\s+")


class OperationType(Enum):
    """Cache-relevant GraphQL operation classes."""
    QUERY = "query"
    MUTATION = "mutation"


def classify(body: Union[bytes, str]) -> OperationType:
    """Classify a GraphQL request body."""
    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        logger.debug("Request body is not JSON, treating as query")
        return OperationType.QUERY

    if not isinstance(payload, dict):
        return OperationType.QUERY

    document = payload.get("query")
    if not isinstance(document, str):
        return OperationType.QUERY

    if _WHITESPACE.sub("", document).startswith("mutation"):
        return OperationType.MUTATION
    return OperationType.QUERY
