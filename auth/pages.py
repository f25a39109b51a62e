from __future__ import annotations

from html import escape

from .models import CallbackCode, CallbackProviderError, CallbackResult

_STYLE = """
body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
       text-align: center; padding: 50px; background: #f5f5f5; }
.container { max-width: 500px; margin: 0 auto; background: white;
             padding: 40px; border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); }
.success { color: #28a745; }
.error { color: #d73a49; }
.icon { font-size: 48px; margin-bottom: 20px; }
"""


def _document(title: str, body: str, *, script: str = "") -> str:
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        f"<head><meta charset=\"utf-8\"><title>{escape(title)}</title><style>{_STYLE}</style></head>\n"
        f"<body><div class=\"container\">{body}</div>{script}</body>\n"
        "</html>\n"
    )


def success_page() -> str:
    return _document(
        "Authentication Successful",
        '<div class="icon">&#9989;</div>'
        '<h2 class="success">Authentication Successful!</h2>'
        "<p>You have been successfully authenticated.</p>"
        "<p>Completing sign-in process...</p>"
        "<p><small>This tab will close automatically in a few seconds.</small></p>",
        script="<script>setTimeout(() => window.close(), 3000);</script>",
    )


def provider_error_page(error: str, description: str | None) -> str:
    detail = f"<p>{escape(description)}</p>" if description else ""
    return _document(
        "Authentication Failed",
        '<div class="icon">&#10060;</div>'
        '<h2 class="error">Authentication Failed</h2>'
        f"<p>Error: {escape(error)}</p>"
        f"{detail}"
        "<p>You can close this tab and try again.</p>",
    )


def malformed_page() -> str:
    return _document(
        "Authentication Error",
        '<div class="icon">&#9888;&#65039;</div>'
        '<h2 class="error">Authentication Error</h2>'
        "<p>No authorization code received.</p>"
        "<p>Please close this tab and try signing in again.</p>",
    )


def server_error_page() -> str:
    return _document(
        "Server Error",
        '<h2 class="error">Server Error</h2>'
        "<p>An error occurred processing the authentication callback.</p>"
        "<p>Please close this tab and try again.</p>",
    )


def render_callback_page(result: CallbackResult) -> str:
    if isinstance(result, CallbackProviderError):
        return provider_error_page(result.error, result.description)
    if isinstance(result, CallbackCode):
        return success_page()
    return malformed_page()
