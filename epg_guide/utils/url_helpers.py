"""
URL helpers shared by logging and error reporting.
"""


def sanitize_url_for_logging(url: str) -> str:
    """Remove credentials from URL for safe logging."""
    if not url or "://" not in url:
        return url
    protocol, rest = url.split("://", 1)
    authority, slash, path = rest.partition("/")
    if "@" not in authority:
        return url
    host = authority.rsplit("@", 1)[1]
    return f"{protocol}://***:***@{host}{slash}{path}"
