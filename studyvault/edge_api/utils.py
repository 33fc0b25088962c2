# studyvault/edge_api/utils.py
#
#
# Imports
import json
import re
from typing import Any, Dict, Optional
#
# 3rd-party Libraries
from pydantic import BaseModel
#
# Local Imports
from .exceptions import AIResponseFormatError
#
#######################################################################################################################
#
# Functions:

_CODE_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def model_to_json_body(model_instance: BaseModel) -> Dict[str, Any]:
    """Dumps a request model with its camelCase wire names, leaving out unset optionals."""
    return model_instance.model_dump(by_alias=True, exclude_none=True)


def strip_code_fences(text: str) -> str:
    match = _CODE_FENCE_RE.match(text)
    return match.group(1).strip() if match else text.strip()


def parse_ai_json(text: str) -> Any:
    """
    Parses JSON produced by a model, tolerating a surrounding markdown code fence.

    Raises:
        AIResponseFormatError: If the text is not valid JSON after stripping fences.
    """
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise AIResponseFormatError(f"AI response is not valid JSON: {e}", raw_text=text) from e


def ensure_parsed(value: Any) -> Any:
    """AI output may arrive as a JSON string; anything else is returned as is."""
    if isinstance(value, str):
        return parse_ai_json(value)
    return value


def parse_sse_data(line: str) -> Optional[Dict[str, Any]]:
    """
    Returns the JSON object carried by one `data: ...` server-sent-event line, or None for
    blank lines, comments and other fields.
    """
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data:
        return None
    try:
        return json.loads(data)
    except json.JSONDecodeError as e:
        raise AIResponseFormatError(f"Malformed stream event: {e}", raw_text=line) from e

#
# End of studyvault/edge_api/utils.py
########################################################################################################################
