# Image manifest retrieval.
#
# https://distribution.github.io/distribution/spec/manifest-v2-2/ documents
# the Docker image manifest format, noting that the response format you get
# back varies based on what you have in your accept header for the request.
#
# https://github.com/opencontainers/image-spec/blob/main/media-types.md
# documents the OCI media types.

from collections import namedtuple
import hashlib
import json
import logging

from rootstrap import constants
from rootstrap import jsonfields
from rootstrap import reference
from rootstrap import util


LOG = logging.getLogger(__name__)
LOG.setLevel(logging.INFO)


LayerDescriptor = namedtuple('LayerDescriptor',
                             ['digest', 'media_type', 'size'])


class ResolutionError(util.RootstrapError):
    pass


class ManifestError(util.RootstrapError):
    pass


def accept_header():
    return ','.join(constants.IMAGE_MANIFEST_TYPES +
                    constants.MANIFEST_LIST_TYPES)


def _auth_headers(token):
    headers = {'Accept': accept_header()}
    if token:
        headers['Authorization'] = 'Bearer %s' % token
    return headers


def _manifest_url(registry, image_name, ref, secure):
    return util.registry_url(
        registry, '/v2/%s/manifests/%s' % (image_name, ref), secure=secure)


def resolve_digest(ref):
    """Return ref if it is already a digest.

    Tags cannot be turned into a digest without asking the registry, see
    resolve_tag() for that.

    Raises:
        ResolutionError: For any ref which is not a sha256 digest.
    """
    if reference.is_digest(ref):
        return ref
    raise ResolutionError(
        '%s is not a digest. Supply the image as NAME@sha256:<digest>, or '
        'allow tag lookups.' % ref)


def resolve_tag(registry, image_name, tag, token, secure=True):
    """Look up the digest a tag currently points to."""
    url = _manifest_url(registry, image_name, tag, secure)
    LOG.info('Resolving tag %s of %s' % (tag, image_name))
    try:
        r = util.request_url('GET', url, headers=_auth_headers(token))
    except util.APIException as e:
        raise ResolutionError(
            'Could not resolve tag %s of %s: %s'
            % (tag, image_name, util.describe_api_error(e)))

    digest = r.headers.get('Docker-Content-Digest')
    if not digest:
        digest = '%s:%s' % (constants.DIGEST_ALGORITHM,
                            hashlib.sha256(r.content).hexdigest())
    if not reference.is_digest(digest):
        raise ResolutionError(
            'Registry returned an unusable digest %s for tag %s'
            % (digest, tag))
    LOG.info('Tag %s is %s' % (tag, digest))
    return digest


def _content_type(r):
    content_type = r.headers.get('Content-Type', '').split(';')[0].strip()
    if content_type in (constants.IMAGE_MANIFEST_TYPES +
                        constants.MANIFEST_LIST_TYPES):
        return content_type

    # Some registries serve manifests as plain JSON, in which case the
    # document's own mediaType field is all we have to go on.
    try:
        doc = json.loads(r.text)
    except ValueError:
        return content_type
    if isinstance(doc, dict):
        if doc.get('mediaType'):
            return doc['mediaType']
        if 'manifests' in doc:
            return constants.MEDIA_TYPE_OCI_INDEX
        if 'layers' in doc:
            return constants.MEDIA_TYPE_OCI_MANIFEST
    return content_type


def select_platform(manifest_list, platform):
    """Find the manifest digest matching platform in a manifest list."""
    available = []
    for m in manifest_list.get('manifests') or []:
        if not isinstance(m, dict) or not m.get('digest'):
            LOG.warning('Ignoring manifest list entry without a digest')
            continue
        p = m.get('platform') or {}
        candidate = reference.Platform(
            os=p.get('os', ''), architecture=p.get('architecture', ''),
            variant=p.get('variant', ''))
        LOG.info('Found manifest for %s'
                 % reference.format_platform(candidate))
        available.append(reference.format_platform(candidate))

        if (candidate.os == platform.os and
                candidate.architecture == platform.architecture and
                (not platform.variant or
                 candidate.variant == platform.variant)):
            return m['digest']

    raise ManifestError(
        'Could not find a manifest for %s, available platforms are: %s'
        % (reference.format_platform(platform),
           ', '.join(available) or 'none'))


def parse_layers(text):
    """Return the layer descriptors of a manifest body, in order.

    Only the "layers" region of the manifest is considered, so the digest
    of the image config is never mistaken for a layer.
    """
    digests = jsonfields.extract_region(text, 'layers', 'digest')
    media_types = jsonfields.extract_region(text, 'layers', 'mediaType')
    try:
        doc = json.loads(text)
        sizes = [layer.get('size') for layer in doc.get('layers', [])]
    except (ValueError, AttributeError):
        sizes = []

    layers = []
    for idx, digest in enumerate(digests):
        media_type = None
        if len(media_types) == len(digests):
            media_type = media_types[idx]
        size = None
        if len(sizes) == len(digests):
            size = sizes[idx]
        layers.append(LayerDescriptor(digest=digest, media_type=media_type,
                                      size=size))
    return layers


def get_layers(registry, image_name, digest, token,
               platform=None, secure=True, allow_list=True):
    """Fetch the manifest for digest and return its layers in order.

    If the digest names a manifest list or OCI index, the manifest for
    platform is selected from it and fetched instead. That manifest must
    be an image manifest, lists do not nest.

    Raises:
        ManifestError: If the manifest lists no layers, has an unknown
            type, or has no entry for the requested platform.
    """
    if not platform:
        platform = reference.parse_platform(constants.DEFAULT_PLATFORM)

    LOG.info('Fetching manifest %s' % digest)
    url = _manifest_url(registry, image_name, digest, secure)
    try:
        r = util.request_url('GET', url, headers=_auth_headers(token))
    except util.APIException as e:
        raise ManifestError(
            'Could not fetch manifest %s of %s: %s'
            % (digest, image_name, util.describe_api_error(e)))

    content_type = _content_type(r)
    if content_type in constants.MANIFEST_LIST_TYPES:
        if not allow_list:
            raise ManifestError(
                'Manifest %s is a manifest list inside another manifest list'
                % digest)
        LOG.info('%s is a multi-platform manifest list' % digest)
        try:
            manifest_list = json.loads(r.text)
        except ValueError as e:
            raise ManifestError('Malformed manifest list %s: %s'
                                % (digest, e))
        if not isinstance(manifest_list, dict):
            raise ManifestError('Malformed manifest list %s' % digest)
        platform_digest = select_platform(manifest_list, platform)
        LOG.info('Using manifest %s for %s'
                 % (platform_digest, reference.format_platform(platform)))
        return get_layers(registry, image_name, platform_digest, token,
                          platform=platform, secure=secure,
                          allow_list=False)

    if content_type not in constants.IMAGE_MANIFEST_TYPES:
        raise ManifestError('Unknown manifest content type %s!'
                            % content_type)

    layers = parse_layers(r.text)
    if not layers:
        raise ManifestError(
            'Manifest %s of %s lists no layers, is this a valid image and '
            'digest?' % (digest, image_name))

    LOG.info('There are %d image layers' % len(layers))
    return layers
