"""Builders for in-memory layers and a fake registry for the tests."""

import gzip
import hashlib
import io
import json
import re
import tarfile
from unittest import mock
from urllib.parse import urlparse, parse_qs

import zstandard as zstd

from rootstrap import constants


def digest_of(blob):
    return 'sha256:%s' % hashlib.sha256(blob).hexdigest()


def tar_file(name, data=b'', mode=0o644):
    ti = tarfile.TarInfo(name)
    ti.type = tarfile.REGTYPE
    ti.size = len(data)
    ti.mode = mode
    return ti, data


def tar_dir(name, mode=0o755):
    ti = tarfile.TarInfo(name)
    ti.type = tarfile.DIRTYPE
    ti.mode = mode
    return ti, None


def tar_symlink(name, target):
    ti = tarfile.TarInfo(name)
    ti.type = tarfile.SYMTYPE
    ti.linkname = target
    ti.mode = 0o777
    return ti, None


def tar_hardlink(name, target):
    ti = tarfile.TarInfo(name)
    ti.type = tarfile.LNKTYPE
    ti.linkname = target
    return ti, None


def whiteout(path):
    dirname, _, name = path.rpartition('/')
    if dirname:
        return tar_file('%s/.wh.%s' % (dirname, name))
    return tar_file('.wh.%s' % name)


def make_tar(members):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode='w', format=tarfile.PAX_FORMAT) as tar:
        for ti, data in members:
            if data is not None:
                tar.addfile(ti, io.BytesIO(data))
            else:
                tar.addfile(ti)
    return buf.getvalue()


def make_layer(members, compression_type=constants.COMPRESSION_GZIP):
    raw = make_tar(members)
    if compression_type == constants.COMPRESSION_GZIP:
        return gzip.compress(raw)
    if compression_type == constants.COMPRESSION_ZSTD:
        return zstd.ZstdCompressor().compress(raw)
    return raw


def chunked(blob, size):
    return [blob[i:i + size] for i in range(0, len(blob), size)]


def make_response(status_code=200, body=b'', headers=None):
    if isinstance(body, str):
        body = body.encode('utf-8')
    r = mock.MagicMock()
    r.status_code = status_code
    r.content = body
    r.text = body.decode('utf-8', errors='replace')
    r.headers = headers or {}
    r.iter_content.side_effect = lambda size: iter(chunked(body, size))
    return r


def make_manifest(layer_blobs, media_type=constants.MEDIA_TYPE_DOCKER_MANIFEST_V2,
                  layer_media_type=constants.MEDIA_TYPE_DOCKER_LAYER_GZIP):
    config = b'{"architecture": "amd64", "os": "linux"}'
    return json.dumps({
        'schemaVersion': 2,
        'mediaType': media_type,
        'config': {
            'mediaType': 'application/vnd.docker.container.image.v1+json',
            'size': len(config),
            'digest': digest_of(config),
        },
        'layers': [
            {
                'mediaType': layer_media_type,
                'size': len(blob),
                'digest': digest_of(blob),
            } for blob in layer_blobs
        ]
    }).encode('utf-8')


class FakeRegistry(object):
    """Serves manifests, blobs and tokens in place of requests.request."""

    MANIFEST_RE = re.compile(r'^/v2/(?P<image>.+)/manifests/(?P<ref>[^/]+)$')
    BLOB_RE = re.compile(r'^/v2/(?P<image>.+)/blobs/(?P<digest>[^/]+)$')

    def __init__(self, image='library/busybox', token='secrettoken'):
        self.image = image
        self.token = token
        self.manifests = {}
        self.blobs = {}
        self.requests = []

    def add_manifest(self, body, media_type, tags=None):
        digest = digest_of(body)
        self.manifests[digest] = (media_type, body)
        for tag in tags or []:
            self.manifests[tag] = (media_type, body)
        return digest

    def add_image(self, layer_blobs, tags=None,
                  media_type=constants.MEDIA_TYPE_DOCKER_MANIFEST_V2,
                  layer_media_type=constants.MEDIA_TYPE_DOCKER_LAYER_GZIP):
        for blob in layer_blobs:
            self.blobs[digest_of(blob)] = blob
        body = make_manifest(layer_blobs, media_type=media_type,
                             layer_media_type=layer_media_type)
        return self.add_manifest(body, media_type, tags=tags)

    def urls(self):
        return [url for _, url, _ in self.requests]

    def request(self, method, url, data=None, headers=None, stream=False,
                auth=None):
        self.requests.append((method, url, dict(headers or {})))
        parsed = urlparse(url)

        if url.startswith(constants.DEFAULT_AUTH_REALM):
            scope = parse_qs(parsed.query).get('scope', [''])[0]
            if scope != 'repository:%s:pull' % self.image:
                return make_response(200, '{"details": "no access"}')
            return make_response(
                200, json.dumps({'token': self.token, 'expires_in': 300}))

        authorization = (headers or {}).get('Authorization')
        if authorization != 'Bearer %s' % self.token:
            return make_response(401, '{"errors": []}')

        m = self.MANIFEST_RE.match(parsed.path)
        if m and m.group('image') == self.image:
            if m.group('ref') not in self.manifests:
                return make_response(404, '{"errors": []}')
            media_type, body = self.manifests[m.group('ref')]
            return make_response(200, body, headers={
                'Content-Type': media_type,
                'Docker-Content-Digest': digest_of(body),
            })

        m = self.BLOB_RE.match(parsed.path)
        if m and m.group('image') == self.image:
            if m.group('digest') not in self.blobs:
                return make_response(404, '{"errors": []}')
            return make_response(200, self.blobs[m.group('digest')])

        return make_response(404, '{"errors": []}')
