"""Classification of ACME server responses.

Every response the client receives goes through :func:`classify`, which
turns it into either a :class:`SuccessEnvelope` or an :class:`AcmeError`.
No other code looks at raw HTTP status codes.
"""

import json
import re
from collections.abc import Mapping
from typing import Any

import httpx
from pydantic import BaseModel, Field

from certwire.exceptions import AcmeError, ProtocolError, TransportError

_LINK_RE = re.compile(r"<([^>]*)>((?:\s*;\s*[^;,]+)*)")
_REL_RE = re.compile(r'rel\s*=\s*"?([^";]+)"?')


class SuccessEnvelope(BaseModel):
    """A successful (2xx) server response."""

    status: int
    headers: dict[str, str]
    body: bytes = b""
    data: Any = None
    links: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def location(self) -> str | None:
        """The Location header, if present."""
        return self.headers.get("location")

    def link(self, relation: str) -> str | None:
        """First link with the given relation, if any."""
        urls = self.links.get(relation)
        return urls[0] if urls else None

    def json_object(self) -> dict[str, Any]:
        """Decoded JSON body, which must be an object.

        Raises:
            ProtocolError: If the body is not a JSON object.
        """
        if not isinstance(self.data, dict):
            raise ProtocolError(
                f"Expected a JSON object in the response, got: {self.body[:200]!r}",
                status=self.status,
            )
        return self.data


def parse_links(values: list[str]) -> dict[str, list[str]]:
    """Parse Link header values into relation -> URLs.

    Several links may share a relation and several links may be folded
    into one header value.
    """
    links: dict[str, list[str]] = {}
    for value in values:
        for match in _LINK_RE.finditer(value):
            url, params = match.groups()
            rel = _REL_RE.search(params)
            if rel is None:
                continue
            for relation in rel.group(1).split():
                links.setdefault(relation, []).append(url)
    return links


def _is_json(content_type: str | None, body: bytes) -> bool:
    if content_type:
        return "json" in content_type.split(";")[0].strip().lower()
    return body.lstrip()[:1] in (b"{", b"[")


def classify(
    status: int,
    headers: httpx.Headers | Mapping[str, str],
    body: bytes,
) -> SuccessEnvelope | AcmeError:
    """Classify a response as success or fault.

    Args:
        status: HTTP status code.
        headers: Response headers.
        body: Raw response body.

    Returns:
        A SuccessEnvelope for 2xx responses, otherwise the AcmeError
        describing the fault. The error is returned, not raised.
    """
    headers = httpx.Headers(headers)
    flat_headers = {name.lower(): value for name, value in headers.items()}
    content_type = headers.get("content-type")

    if 200 <= status < 300:
        data = None
        if body and _is_json(content_type, body):
            try:
                data = json.loads(body)
            except ValueError as e:
                return ProtocolError(
                    f"Malformed JSON in server response: {e}",
                    status=status,
                )
        return SuccessEnvelope(
            status=status,
            headers=flat_headers,
            body=body,
            data=data,
            links=parse_links(headers.get_list("link")),
        )

    try:
        problem = json.loads(body) if body else None
    except ValueError:
        problem = None

    if isinstance(problem, dict) and ("type" in problem or "detail" in problem):
        return AcmeError.from_response(problem, status, headers=flat_headers)

    return AcmeError.from_response(
        {
            "type": TransportError.default_type,
            "detail": body.decode("utf-8", errors="replace") or f"HTTP {status}",
        },
        status,
        headers=flat_headers,
    )
