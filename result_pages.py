"""
result_pages.py - HTML pages that hand the OAuth outcome back to the CMS.

The callback renders in a popup whose opener (the CMS admin) lives on another
origin, so the result travels by window.postMessage:

    authorization:github:success:{"token":"...","provider":"github"}
    authorization:github:error:<message>

That string is the CMS's wire format and must not change.

Posting repeats on a short interval until the opener answers with any
message, bounded by an attempt cap and a deadline. Without an opener, or once
the bound is hit, the window navigates to the CMS admin URL with the result
in the fragment (never the query string).
"""

import html as html_mod
import json
from urllib.parse import urlencode

PROVIDER = "github"
MESSAGE_PREFIX = f"authorization:{PROVIDER}"
HANDSHAKE_MARKER = f"authorizing:{PROVIDER}"

RESULT_RETRY_INTERVAL_MS = 50
RESULT_MAX_ATTEMPTS = 40
RESULT_DEADLINE_MS = 2500

HANDSHAKE_INTERVAL_MS = 250
HANDSHAKE_TIMEOUT_MS = 3000
HANDSHAKE_MAX_ATTEMPTS = HANDSHAKE_TIMEOUT_MS // HANDSHAKE_INTERVAL_MS

_JS_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    "<": "\\x3c",
    ">": "\\x3e",
    "\n": "\\n",
    "\r": "\\r",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _js_string(value: str) -> str:
    """Single-quoted JS literal that is safe inside a <script> element."""
    return "'" + "".join(_JS_ESCAPES.get(ch, ch) for ch in value) + "'"


def format_message(ok: bool, payload: dict | None = None, message: str = "") -> str:
    if ok:
        return f"{MESSAGE_PREFIX}:success:{json.dumps(payload or {}, separators=(',', ':'))}"
    return f"{MESSAGE_PREFIX}:error:{message}"


def fallback_url(admin_url: str | None, ok: bool,
                 payload: dict | None = None, message: str = "") -> str:
    """Admin URL carrying the result in its fragment, or '' if none is known."""
    if not admin_url:
        return ""
    if ok:
        fragment = urlencode({
            "access_token": (payload or {}).get("token", ""),
            "provider": PROVIDER,
        })
    else:
        fragment = urlencode({"error": message, "provider": PROVIDER})
    return f"{admin_url.split('#', 1)[0]}#{fragment}"


# ---------------------------------------------------------------------------
# HTML templates
# ---------------------------------------------------------------------------

def _page(title: str, heading: str, body: str, accent: str, script: str = "") -> str:
    safe_title = html_mod.escape(title)
    safe_heading = html_mod.escape(heading)
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>CMS Auth: {safe_title}</title>
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
            background: #0a0a1a; color: #e0e0e0;
            display: flex; justify-content: center; align-items: center;
            min-height: 100vh; margin: 0; }}
        .card {{ background: #1a1a2e; border: 1px solid {accent}; border-radius: 12px;
            padding: 2rem; max-width: 400px; width: 90%;
            box-shadow: 0 4px 24px rgba(0, 0, 0, 0.5); text-align: center; }}
        h1 {{ font-size: 1.3rem; color: {accent}; margin: 0 0 1rem 0; }}
        .detail {{ color: #888; font-size: 0.9rem; word-break: break-word; }}
        a {{ color: #00d4ff; }}
    </style>
</head>
<body>
    <div class="card">
        <h1>{safe_heading}</h1>
{body}
    </div>
{script}
</body>
</html>"""


def result_page(
    ok: bool,
    origin: str,
    payload: dict | None = None,
    message: str = "",
    admin_url: str | None = None,
) -> str:
    """Page that delivers the outcome to the opener window.

    ``origin`` is the origin the flow was bound to, or "*" when unknown.
    The message is always broadcast to "*" as well.
    """
    wire = format_message(ok, payload, message)
    fallback = fallback_url(admin_url, ok, payload, message)
    if ok:
        heading = "Authorized"
        text = "Authentication successful. You can close this window."
        detail = ""
    else:
        heading = "Authentication failed"
        text = "Authentication failed."
        detail = f'        <p class="detail">{html_mod.escape(message)}</p>\n'
    body = (
        f'        <p id="status">{html_mod.escape(text)}</p>\n'
        f"{detail}"
    )

    script = f"""    <script>
    (function () {{
        var message = {_js_string(wire)};
        var targetOrigin = {_js_string(origin or "*")};
        var fallbackUrl = {_js_string(fallback)};
        var intervalMs = {RESULT_RETRY_INTERVAL_MS};
        var maxAttempts = {RESULT_MAX_ATTEMPTS};
        var deadline = Date.now() + {RESULT_DEADLINE_MS};
        var attempts = 0;
        var settled = false;
        var timer = null;
        var status = document.getElementById("status");

        function post() {{
            var opener = window.opener;
            if (!opener || opener.closed) return false;
            if (targetOrigin !== "*") {{
                try {{ opener.postMessage(message, targetOrigin); }} catch (e) {{}}
            }}
            try {{ opener.postMessage(message, "*"); }} catch (e) {{}}
            return true;
        }}

        function settle() {{
            settled = true;
            if (timer !== null) clearInterval(timer);
        }}

        function fallBack() {{
            settle();
            try {{ window.close(); }} catch (e) {{}}
            if (fallbackUrl) {{
                window.location.replace(fallbackUrl);
            }} else if (status) {{
                status.textContent = "Could not reach the editor window. Please close this window and try again.";
            }}
        }}

        window.addEventListener("message", function (event) {{
            if (settled || !window.opener || event.source !== window.opener) return;
            settle();
            try {{ window.close(); }} catch (e) {{}}
        }});

        function tick() {{
            if (settled) return;
            attempts += 1;
            if (!post()) {{
                fallBack();
                return;
            }}
            if (attempts >= maxAttempts || Date.now() >= deadline) fallBack();
        }}

        tick();
        if (!settled) timer = setInterval(tick, intervalMs);
    }})();
    </script>"""

    accent = "#00d4ff" if ok else "#ff4444"
    return _page(heading, heading, body, accent, script)


def handshake_page(authorize_url: str, origin: str = "*") -> str:
    """Auth-start page: wait for the opener to echo the marker, then go to GitHub.

    Proceeds anyway after HANDSHAKE_TIMEOUT_MS or HANDSHAKE_MAX_ATTEMPTS pings.
    """
    html_url = html_mod.escape(authorize_url, quote=True)
    body = (
        '        <p>Connecting to GitHub...</p>\n'
        f'        <p class="detail"><a href="{html_url}">Continue to GitHub</a></p>\n'
    )
    script = f"""    <script>
    (function () {{
        var marker = {_js_string(HANDSHAKE_MARKER)};
        var authorizeUrl = {_js_string(authorize_url)};
        var targetOrigin = {_js_string(origin or "*")};
        var maxAttempts = {HANDSHAKE_MAX_ATTEMPTS};
        var deadline = Date.now() + {HANDSHAKE_TIMEOUT_MS};
        var attempts = 0;
        var done = false;
        var timer = null;

        function proceed() {{
            if (done) return;
            done = true;
            if (timer !== null) clearInterval(timer);
            window.location.replace(authorizeUrl);
        }}

        window.addEventListener("message", function (event) {{
            if (window.opener && event.source === window.opener && event.data === marker) proceed();
        }});

        function ping() {{
            if (done) return;
            var opener = window.opener;
            if (!opener || opener.closed) {{
                proceed();
                return;
            }}
            attempts += 1;
            try {{ opener.postMessage(marker, targetOrigin); }} catch (e) {{}}
            if (attempts >= maxAttempts || Date.now() >= deadline) proceed();
        }}

        ping();
        if (!done) timer = setInterval(ping, {HANDSHAKE_INTERVAL_MS});
    }})();
    </script>"""
    return _page("Authorizing", "Authorizing", body, "#00d4ff", script)
