"""Utility functions for the tagnotes service."""

import asyncio
import unicodedata
from typing import Any, Callable, Dict, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from tagnotes.exceptions import ErrorCode, ValidationError

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

MAX_FILENAME_LENGTH = 120
def sanitize_filename(name: str) -> str:
    """Reduce an uploaded file name to something safe inside a blob key.

    - Drops any directory part a client may have sent
    - Replaces whitespace runs with a single underscore
    - Keeps only ASCII alphanumerics, hyphens, underscores and dots
    - Collapses '..' so the result can never climb out of the blob directory

    Examples:
        "My Report (final).pdf" -> "My_Report_final.pdf"
        "../../etc/passwd" -> "passwd"
        "résumé.txt" -> "resume.txt"

    Args:
        name: The client supplied file name.

    Returns:
        Sanitized name, possibly empty.
    """
    if not name:
        return ""

    # Keep only the last path segment for both separator styles
    base = name.replace("\\", "/").rsplit("/", 1)[-1]

    # Fold accents to ASCII where possible
    base = unicodedata.normalize("NFKD", base).encode("ascii", "ignore").decode("ascii")

    words = base.split()
    cleaned = "_".join(
        "".join(c for c in word if c.isalnum() or c in "-_.") for word in words
    )
    while ".." in cleaned:
        cleaned = cleaned.replace("..", ".")
    cleaned = cleaned.strip("._")

    return cleaned[:MAX_FILENAME_LENGTH]


def parse_payload(
    model: Type[M],
    payload: Union[Dict[str, Any], M],
    code: ErrorCode = ErrorCode.VALIDATION_FAILED,
) -> M:
    """Validate a raw request payload against a pydantic model.

    Pydantic's error is turned into our ValidationError, reporting the first
    failing field. Errors raised by the model's own validators get `code`;
    type and shape errors always get VALIDATION_FAILED.
    """
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        error_code = code if first.get("type") == "value_error" else ErrorCode.VALIDATION_FAILED
        raise ValidationError(
            first.get("msg", "Invalid input"),
            field=field,
            value=first.get("input"),
            code=error_code,
        ) from e


async def run_sync(func: Callable[..., T], *args, **kwargs) -> T:
    """Run a blocking function in a worker thread so the event loop stays free.

    Every store call is blocking; the async route handlers wrap them with this.

    Example:
        page = await run_sync(service.list_notes, user_id, offset=0, limit=20)
    """
    return await asyncio.to_thread(func, *args, **kwargs)
