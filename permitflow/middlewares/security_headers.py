from starlette.types import ASGIApp, Message, Receive, Scope, Send

from permitflow.core.settings import settings


class SecurityHeadersMiddleware:
    """Apply a set of safe default security headers for HTTP responses."""

    def __init__(self, app: ASGIApp, enable_hsts: bool = True) -> None:
        self.app = app
        self.enable_hsts = enable_hsts

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        no_store = scope.get("path", "").startswith(("/api/v1/download", "/api/v1/otp"))

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                defaults: list[tuple[bytes, bytes]] = [
                    (b"x-content-type-options", b"nosniff"),
                    (b"x-frame-options", b"DENY"),
                    (b"referrer-policy", b"no-referrer"),
                    (b"cross-origin-opener-policy", b"same-origin"),
                ]
                if no_store:
                    # download tokens and OTP references must not land in shared caches
                    defaults.append((b"cache-control", b"no-store"))
                if self.enable_hsts:
                    defaults.append((
                        b"strict-transport-security",
                        b"max-age=63072000; includeSubDomains; preload",
                    ))
                if settings.content_security_policy:
                    defaults.append((b"content-security-policy", settings.content_security_policy.encode()))

                existing_keys = {k.lower() for k, _ in message.get("headers", [])}
                new_headers = list(message.get("headers", []))
                for key, value in defaults:
                    if key not in existing_keys:
                        new_headers.append((key, value))
                message["headers"] = new_headers
            await send(message)

        await self.app(scope, receive, send_with_headers)
