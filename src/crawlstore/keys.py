from __future__ import annotations
import hashlib
import re

# scheme and optional userinfo, host, then everything else (port, path, query, fragment)
URI_RE_PARSER = re.compile(r"^([^:/?#]+://(?:[^/?#@]+@)?)([^:/?#]+)(.*)$", re.DOTALL)

def reverse_hostname(hostname: str) -> str:
    """Reverse the label order of a hostname: www.example.com -> com.example.www."""
    if not hostname:
        return ""
    return ".".join(reversed([label for label in hostname.split(".") if label]))

def create_url_key(url: str) -> str:
    """Build the sort-friendly row key for a URL.

    The host labels are reversed so rows of one domain sort together and the
    rest of the URL is appended unchanged. dns: pseudo-URLs become the reversed
    hostname, and anything else that does not parse is used as-is.
    """
    if not url:
        return ""
    m = URI_RE_PARSER.match(url)
    if m is None:
        if url.startswith("dns:"):
            return reverse_hostname(url[4:])
        return url
    host = m.group(2)
    path = m.group(3) or "/"
    return reverse_hostname(host) + path

def create_hash_key(content: bytes, algorithm: str = "sha1") -> str:
    """Lowercase hex digest of the content, used as the content table row key."""
    return hashlib.new(algorithm, content).hexdigest()
