"""Request ID generation for CORS Proxify.

Every inbound proxy request gets a ULID that is bound to the structlog context
(see ``utils.logger.set_request_id``) so all log lines of one redirect chain can
be correlated.

Uses the `python-ulid` library; do NOT hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Returns:
        str: Crockford Base32 ULID, e.g. ``"01KJ0JRVHYA7KX32VPN5ZSCTMV"``.
    """
    return str(ULID())
