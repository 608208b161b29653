import hashlib
import io
import logging
import zlib

import zstandard as zstd

from rootstrap import compression
from rootstrap import constants
from rootstrap import manifest
from rootstrap import util


LOG = logging.getLogger(__name__)
LOG.setLevel(logging.INFO)


class LayerError(util.RootstrapError):
    pass


class LayerStream(io.RawIOBase):
    """A readable stream of decompressed layer data.

    Wraps the chunk iterator of a streaming blob response. Compressed chunks
    are hashed and decompressed as they are read, so a layer is never held
    in memory in full. Call verify() once the consumer is done to check the
    blob against its digest.
    """

    def __init__(self, digest, chunks, media_type=None, response=None):
        super(LayerStream, self).__init__()
        self.digest = digest
        self.media_type = media_type
        self.compressed_bytes = 0

        self._chunks = iter(chunks)
        self._response = response
        self._hash = hashlib.sha256()
        self._decompressor = None
        self._buffer = b''
        self._eof = False

    def readable(self):
        return True

    def _choose_decompressor(self, first_chunk):
        compression_type = compression.detect_compression_from_media_type(
            self.media_type)
        if compression_type == constants.COMPRESSION_UNKNOWN:
            compression_type = compression.detect_compression(first_chunk)
        if compression_type == constants.COMPRESSION_UNKNOWN:
            compression_type = constants.COMPRESSION_GZIP
        LOG.info('Layer compression: %s' % compression_type)
        return compression.StreamingDecompressor(compression_type)

    def _fill(self):
        """Decompress chunks until there is buffered output or input ends."""
        while not self._buffer and not self._eof:
            try:
                chunk = next(self._chunks)
            except StopIteration:
                self._eof = True
                if self._decompressor:
                    self._buffer = self._decompressor.flush()
                return
            if not chunk:
                continue

            self._hash.update(chunk)
            self.compressed_bytes += len(chunk)
            if not self._decompressor:
                self._decompressor = self._choose_decompressor(chunk)
            try:
                self._buffer = self._decompressor.decompress(chunk)
            except (zlib.error, zstd.ZstdError) as e:
                raise LayerError('Could not decompress layer %s: %s'
                                 % (self.digest, e))

    def readinto(self, b):
        self._fill()
        n = min(len(b), len(self._buffer))
        b[:n] = self._buffer[:n]
        self._buffer = self._buffer[n:]
        return n

    def drain(self):
        """Consume whatever the reader left unread, such as tar padding."""
        while self.readinto(bytearray(constants.CHUNK_SIZE)):
            pass

    def verify(self):
        """Check the compressed bytes against the layer digest.

        Raises:
            LayerError: If the digest does not match.
        """
        self.drain()
        algorithm, _, expected = self.digest.partition(':')
        if algorithm != constants.DIGEST_ALGORITHM:
            LOG.warning('Cannot verify %s digest for layer %s'
                        % (algorithm, self.digest))
            return

        actual = self._hash.hexdigest()
        if actual != expected:
            LOG.error('Hash verification failed for layer (%s vs %s)'
                      % (expected, actual))
            raise LayerError('Hash verification failed for layer %s'
                             % self.digest)

    def close(self):
        if self._response is not None:
            self._response.close()
            self._response = None
        super(LayerStream, self).close()


def fetch_layer(registry, image_name, layer, token, secure=True):
    """Start streaming a layer blob from the registry.

    Args:
        layer: A manifest.LayerDescriptor, or a bare digest string.

    Returns:
        A LayerStream yielding the decompressed tar data.
    """
    if isinstance(layer, str):
        layer = manifest.LayerDescriptor(digest=layer, media_type=None,
                                         size=None)

    if layer.size is not None:
        LOG.info('Fetching layer %s (%d bytes)' % (layer.digest, layer.size))
    else:
        LOG.info('Fetching layer %s' % layer.digest)

    headers = {}
    if token:
        headers['Authorization'] = 'Bearer %s' % token
    url = util.registry_url(
        registry, '/v2/%s/blobs/%s' % (image_name, layer.digest),
        secure=secure)
    try:
        r = util.request_url('GET', url, headers=headers, stream=True)
    except util.APIException as e:
        raise LayerError('Could not fetch layer %s: %s'
                         % (layer.digest, util.describe_api_error(e)))

    return LayerStream(layer.digest, r.iter_content(constants.CHUNK_SIZE),
                       media_type=layer.media_type, response=r)
