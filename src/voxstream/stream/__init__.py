"""Response stream decoding — frames, channels and the HTTP transport."""

from voxstream.stream.channels import (
    Extracted,
    Snapshot,
    accumulate,
    compose,
    extract,
    strip_answer_prefix,
    tidy,
)
from voxstream.stream.frames import (
    AgentEvent,
    AgentEventFrame,
    ErrorFrame,
    Frame,
    ReasoningFrame,
    TokenFrame,
    decode_frames,
)
from voxstream.stream.transport import (
    AgentStreamClient,
    StreamRequest,
    build_request,
    render,
)

__all__ = [
    "AgentEvent",
    "AgentEventFrame",
    "ErrorFrame",
    "Frame",
    "ReasoningFrame",
    "TokenFrame",
    "decode_frames",
    "Extracted",
    "Snapshot",
    "accumulate",
    "compose",
    "extract",
    "strip_answer_prefix",
    "tidy",
    "AgentStreamClient",
    "StreamRequest",
    "build_request",
    "render",
]
