"""Response hardening for the auth service.

Credentials and TOTP provisioning material travel in these responses, so every
reply is marked non-cacheable on top of the usual browser protections.
"""

from __future__ import annotations

from flask import Flask, Response

_CSP = "; ".join(
    f"{directive} {value}"
    for directive, value in (
        ("default-src", "'none'"),
        ("frame-ancestors", "'none'"),
        ("base-uri", "'none'"),
        ("form-action", "'self'"),
        ("img-src", "data:"),  # QR codes are returned as data URLs
    )
)

_PERMISSIONS_POLICY = "geolocation=(), microphone=(), camera=(), payment=(), usb=()"

_HSTS = "max-age=63072000; includeSubDomains"


def apply_security_headers(response: Response, *, hsts: bool = True) -> Response:
    """Set hardening headers without overriding ones a view chose explicitly."""

    headers = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Content-Security-Policy": _CSP,
        "Referrer-Policy": "no-referrer",
        "Permissions-Policy": _PERMISSIONS_POLICY,
        "Cross-Origin-Opener-Policy": "same-origin",
        "Cache-Control": "no-store",
        "Pragma": "no-cache",
    }
    if hsts:
        headers["Strict-Transport-Security"] = _HSTS

    for header, value in headers.items():
        response.headers.setdefault(header, value)
    return response


def register_security_headers(app: Flask, *, hsts: bool = True) -> None:
    @app.after_request
    def _harden(response: Response) -> Response:
        return apply_security_headers(response, hsts=hsts)


__all__ = ["apply_security_headers", "register_security_headers"]
