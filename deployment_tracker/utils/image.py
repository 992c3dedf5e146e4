"""Helpers for container image references and runtime image IDs."""
from typing import Tuple

DIGEST_PREFIX = "sha256:"


def extract_digest(image_id: str) -> str:
    """
    Extract the content digest from a container status imageID.

    imageID is typically ``docker-pullable://image@sha256:abc...`` or
    ``docker://sha256:abc...``. The digest runs from the first ``sha256:``
    up to the next ``@``, space or the end of the string. IDs without a
    digest are returned unchanged.
    """
    if not image_id:
        return ""

    start = image_id.find(DIGEST_PREFIX)
    # a bare trailing "sha256:" carries no digest
    if start == -1 or start + len(DIGEST_PREFIX) >= len(image_id):
        return image_id

    remaining = image_id[start:]
    end = len(remaining)
    for i, ch in enumerate(remaining):
        if ch in ("@", " "):
            end = i
            break
    return remaining[:end]


def extract_name(image: str) -> Tuple[str, str]:
    """
    Split a container image reference into (name, tag).

    Any ``@digest`` suffix is dropped first. The tag is only taken from a
    ``:`` that comes after the last ``/`` so a registry port is never read
    as a tag.

    Examples:
        "nginx:1.21"                     -> ("nginx", "1.21")
        "nginx@sha256:abc123"            -> ("nginx", "")
        "nginx:1.21@sha256:abc123"       -> ("nginx", "1.21")
        "localhost:5000/myapp:v1.0"      -> ("localhost:5000/myapp", "v1.0")
        "localhost:5000/myapp"           -> ("localhost:5000/myapp", "")
    """
    if not image:
        return "", ""

    at = image.find("@")
    if at != -1:
        image = image[:at]

    tag = ""
    last_slash = image.rfind("/")
    tag_start = image.rfind(":")
    if tag_start > last_slash:
        tag = image[tag_start + 1:]
        image = image[:tag_start]

    return image, tag
