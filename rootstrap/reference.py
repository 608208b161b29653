"""Parsing of image references and platform specifications.

Image references:
    busybox                         -> library/busybox:latest
    busybox:1.36                    -> library/busybox:1.36
    busybox@sha256:<hex>            -> library/busybox@sha256:<hex>
    busybox:sha256:<hex>            -> library/busybox@sha256:<hex>
    ghcr.io/owner/repo:v1           -> registry ghcr.io, owner/repo:v1
    localhost:5000/myimage:latest   -> registry localhost:5000, myimage:latest

Platforms:
    os/architecture[/variant]       e.g. linux/amd64, linux/arm/v7
"""

from collections import namedtuple
import re

from rootstrap import constants
from rootstrap import util


ImageReference = namedtuple('ImageReference', ['registry', 'name', 'ref'])
Platform = namedtuple('Platform', ['os', 'architecture', 'variant'])

DIGEST_RE = re.compile(r'^sha256:[0-9a-f]{64}$')


class ReferenceParseError(util.RootstrapError):
    """Raised when an image reference or platform cannot be parsed."""
    pass


def is_digest(ref):
    return DIGEST_RE.match(ref) is not None


def is_docker_hub(registry):
    return registry in constants.DOCKER_HUB_ALIASES


def normalize_name(name, registry=constants.DEFAULT_REGISTRY):
    """Place official Docker Hub images in the default namespace.

    Names which already carry a namespace are returned unchanged, as are
    names on registries other than Docker Hub.
    """
    if not is_docker_hub(registry):
        return name
    if '/' in name:
        return name
    return '%s/%s' % (constants.DEFAULT_NAMESPACE, name)


def _split_registry(image, default_registry):
    # The first path element is a registry host if it looks like one
    first, sep, rest = image.partition('/')
    if sep and ('.' in first or ':' in first or first == 'localhost'):
        return first, rest
    return default_registry, image


def parse_reference(image, default_registry=constants.DEFAULT_REGISTRY):
    """Parse IMAGE[:REF] into an ImageReference.

    Raises:
        ReferenceParseError: If the reference is malformed.
    """
    if not image:
        raise ReferenceParseError('No image specified')

    registry, path = _split_registry(image, default_registry)
    if is_docker_hub(registry):
        registry = constants.DEFAULT_REGISTRY

    if '@' in path:
        name, ref = path.split('@', 1)
    elif ':sha256:' in path:
        name, ref = path.split(':', 1)
    elif ':' in path:
        last_colon = path.rfind(':')
        name = path[:last_colon]
        ref = path[last_colon + 1:]
    else:
        name = path
        ref = constants.DEFAULT_TAG

    if not name:
        raise ReferenceParseError('Missing image name in %s' % image)
    if not ref:
        raise ReferenceParseError('Empty tag or digest in %s' % image)
    if ref.startswith('sha256:') and not is_digest(ref):
        raise ReferenceParseError(
            'Malformed digest %s, expected sha256: followed by 64 hex '
            'characters' % ref)
    if name != name.lower():
        raise ReferenceParseError(
            'Repository names must be lowercase: %s' % name)

    return ImageReference(registry=registry,
                          name=normalize_name(name, registry),
                          ref=ref)


def parse_platform(platform):
    """Parse os/architecture[/variant] into a Platform."""
    parts = platform.split('/') if platform else []
    if len(parts) not in (2, 3) or not all(parts):
        raise ReferenceParseError(
            'Invalid platform %s, expected os/architecture[/variant]'
            % platform)
    if len(parts) == 2:
        parts.append('')
    return Platform(os=parts[0], architecture=parts[1], variant=parts[2])


def format_platform(platform):
    if platform.variant:
        return '%s/%s/%s' % platform
    return '%s/%s' % (platform.os, platform.architecture)
