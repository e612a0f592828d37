"""
Validation utility functions for the micro-lesson pipeline.
"""

import ipaddress
import mimetypes
import socket
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

from ..logging_config import get_logger

logger = get_logger(__name__)

VIDEO_EXTENSIONS = {'.mp4', '.avi', '.mov', '.mkv', '.webm', '.flv', '.wmv', '.m4v', '.mpeg', '.mpg'}

_EXTRA_VIDEO_TYPES = {
    '.mkv': 'video/x-matroska',
    '.webm': 'video/webm',
    '.flv': 'video/x-flv',
    '.m4v': 'video/x-m4v',
}


def validate_url(url: str) -> bool:
    """
    Validate if a string is an http(s) URL with a host.

    Args:
        url: URL string to validate

    Returns:
        True if valid URL, False otherwise
    """
    try:
        result = urlparse(url)
    except ValueError as e:
        logger.debug("URL validation failed", url=url, error=str(e))
        return False
    is_valid = result.scheme in ("http", "https") and bool(result.hostname)
    logger.debug("URL validation", url=url, valid=is_valid)
    return is_valid


def is_public_host(hostname: str, resolve: bool = True) -> bool:
    """
    Check that a host does not point at a private, loopback or reserved address.

    Hostnames are resolved when ``resolve`` is set; a name that does not
    resolve is treated as not public.
    """
    if not hostname:
        return False
    if hostname.lower() in ("localhost", "localhost.localdomain"):
        return False

    try:
        addresses = [ipaddress.ip_address(hostname)]
    except ValueError:
        if not resolve:
            return True
        try:
            infos = socket.getaddrinfo(hostname, None)
        except socket.gaierror:
            logger.debug("Host did not resolve", host=hostname)
            return False
        addresses = [ipaddress.ip_address(info[4][0]) for info in infos]

    for address in addresses:
        if (address.is_private or address.is_loopback or address.is_link_local
                or address.is_reserved or address.is_multicast or address.is_unspecified):
            logger.debug("Host rejected", host=hostname, address=str(address))
            return False
    return True


def guess_video_mime_type(file_path: Union[str, Path]) -> Optional[str]:
    """Return the video MIME type for a path, or None if it is not a known video container."""
    file_path = Path(file_path)
    suffix = file_path.suffix.lower()
    if suffix not in VIDEO_EXTENSIONS:
        return None
    mime_type, _ = mimetypes.guess_type(str(file_path))
    mime_type = mime_type or _EXTRA_VIDEO_TYPES.get(suffix)
    if not mime_type or not mime_type.startswith("video/"):
        return None
    return mime_type
