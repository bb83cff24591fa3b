"""
Label pinning via the graph indexer's `pinThing` GraphQL mutation.

The pinned object's `name` becomes the atom label shown by explorers, so the
social atom reads as the platform user id instead of raw JSON.
"""
from __future__ import annotations

import asyncio
import logging

import requests

from errors import PinError

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 15.0  # seconds

PIN_THING_MUTATION = """
mutation PinThing($thing: PinThingInput!) {
  pinThing(thing: $thing) {
    uri
  }
}
"""


def _post(endpoint: str, payload: dict) -> requests.Response:
    return requests.post(
        endpoint,
        json=payload,
        headers={"Content-Type": "application/json"},
        timeout=HTTP_TIMEOUT,
    )


async def pin_label(
    label: str,
    description: str,
    endpoint: str,
    *,
    image: str = "",
    url: str = "",
) -> str:
    """Pin `{name: label, description, image, url}` and return its uri."""
    payload = {
        "query": PIN_THING_MUTATION,
        "variables": {
            "thing": {
                "name": label,
                "description": description,
                "image": image,
                "url": url,
            }
        },
    }

    try:
        r = await asyncio.to_thread(_post, endpoint, payload)
    except requests.RequestException as e:
        raise PinError(f"IPFS pinning failed: {e}") from e

    if not r.ok:
        raise PinError(f"IPFS pinning failed: {r.status_code}")

    try:
        body = r.json()
    except ValueError as e:
        raise PinError("IPFS pinning returned invalid JSON") from e

    if not isinstance(body, dict):
        raise PinError("IPFS pinning returned an unexpected payload")

    errors = body.get("errors")
    if errors:
        first = errors[0] if isinstance(errors, list) else errors
        message = first.get("message") if isinstance(first, dict) else str(first)
        raise PinError(f"IPFS pinning error: {message}")

    uri = ((body.get("data") or {}).get("pinThing") or {}).get("uri")
    if not uri:
        raise PinError("No IPFS URI returned from pinThing")

    logger.info("Pinned label %r -> %s", label, uri)
    return uri
