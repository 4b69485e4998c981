"""Admission decisions returned by the origin policy engine.

  Allow: forward the request: carries the resolved Target, the outbound
          header set and the externally-visible proxy base URL.
  Deny : answer locally without any outbound call. Besides 4xx rejections this
          covers the 200 preflight answer and the 301 same-origin shortcut.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from corsproxify.models.target import Target


@dataclass
class Allow:
    target: Target
    outbound_headers: dict[str, str]
    proxy_base_url: str


@dataclass
class Deny:
    status_code: int
    reason: str
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)


Decision = Union[Allow, Deny]
