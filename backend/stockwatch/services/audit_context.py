# Overview: Network provenance (client address and agent) attached to audit entries.

from __future__ import annotations

from dataclasses import dataclass

from flask import Request


@dataclass(frozen=True)
class Provenance:
    ip_address: str | None = None
    user_agent: str | None = None


SYSTEM = Provenance()


def provenance_from_request(req: Request) -> Provenance:
    """
    Extract client address and User-Agent from the request.

    Behind a proxy the first X-Forwarded-For hop is the client.
    """
    forwarded = req.headers.get("X-Forwarded-For")
    ip = None
    if forwarded:
        ip = forwarded.split(",")[0].strip() or None
    if ip is None:
        ip = req.remote_addr
    return Provenance(ip_address=ip, user_agent=req.headers.get("User-Agent"))
