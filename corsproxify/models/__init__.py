"""CORS Proxify models package.

  - target.py    : Target, the upstream URL a request is forwarded to
  - decisions.py : Allow / Deny returned by the origin policy engine
  - forwarding.py: ForwardingState, the per-request redirect state machine
  - responses.py : builders for locally-answered responses
"""
