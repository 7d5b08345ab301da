"""Wire envelopes exchanged with the signer desktop agent.

- Commands: client → agent, tagged with `command` and, for tracked calls,
  a `requestId`
- Responses: agent → client, echoing the `requestId` and carrying either
  a result or an `error`
"""

from .commands import FIRE_AND_FORGET, CommandEnvelope, CommandType
from .responses import ResponseEnvelope

__all__ = [
    "CommandEnvelope",
    "CommandType",
    "FIRE_AND_FORGET",
    "ResponseEnvelope",
]
