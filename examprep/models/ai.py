"""
examprep/models/ai.py

Failure taxonomy shared by the provider pipeline and the error layer.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Union

ChatRole = Literal["system", "user", "assistant"]

# `content` is plain text, or a multipart list of {"type": "text"} /
# {"type": "image_url"} parts for the image-solving variant.
ChatMessage = Dict[str, Union[str, List[Dict[str, Any]]]]


class FailureKind(str, Enum):
    """Why a provider call did not produce text."""
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    REGION_BLOCKED = "region_blocked"
    UNKNOWN = "unknown"
