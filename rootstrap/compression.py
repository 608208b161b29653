"""Decompression of container image layers.

Layers are normally gzip compressed tarballs, but OCI images may also carry
zstd compressed or uncompressed layers. The compression is described by the
layer media type in the manifest, and can be confirmed from the magic bytes
at the start of the blob.
"""

import zlib

import zstandard as zstd

from rootstrap import constants


# Magic bytes for compression format detection
GZIP_MAGIC = b'\x1f\x8b'
ZSTD_MAGIC = b'\x28\xb5\x2f\xfd'
TAR_MAGIC_OFFSET = 257
TAR_MAGIC = b'ustar'


def detect_compression(data):
    """Detect compression format from the first bytes of a blob.

    Args:
        data: Bytes from the start of the blob.

    Returns:
        One of COMPRESSION_GZIP, COMPRESSION_ZSTD, COMPRESSION_NONE,
        or COMPRESSION_UNKNOWN.
    """
    if len(data) < 2:
        return constants.COMPRESSION_UNKNOWN

    if data[:2] == GZIP_MAGIC:
        return constants.COMPRESSION_GZIP
    if data[:4] == ZSTD_MAGIC:
        return constants.COMPRESSION_ZSTD
    if data[TAR_MAGIC_OFFSET:TAR_MAGIC_OFFSET + 5] == TAR_MAGIC:
        return constants.COMPRESSION_NONE

    return constants.COMPRESSION_UNKNOWN


def detect_compression_from_media_type(media_type):
    """Detect compression format from OCI/Docker media type.

    Args:
        media_type: Media type string from manifest.

    Returns:
        One of COMPRESSION_GZIP, COMPRESSION_ZSTD, COMPRESSION_NONE,
        or COMPRESSION_UNKNOWN.
    """
    if media_type is None:
        return constants.COMPRESSION_UNKNOWN

    if media_type in (constants.MEDIA_TYPE_DOCKER_LAYER_GZIP,
                      constants.MEDIA_TYPE_OCI_LAYER_GZIP):
        return constants.COMPRESSION_GZIP
    if media_type in (constants.MEDIA_TYPE_DOCKER_LAYER_ZSTD,
                      constants.MEDIA_TYPE_OCI_LAYER_ZSTD):
        return constants.COMPRESSION_ZSTD
    if media_type == constants.MEDIA_TYPE_OCI_LAYER_UNCOMPRESSED:
        return constants.COMPRESSION_NONE

    # Fallback: check for known suffixes
    if media_type.endswith('+gzip') or media_type.endswith('.gzip'):
        return constants.COMPRESSION_GZIP
    if media_type.endswith('+zstd') or media_type.endswith('.zstd'):
        return constants.COMPRESSION_ZSTD
    if media_type.endswith('.tar') and '+' not in media_type:
        return constants.COMPRESSION_NONE

    return constants.COMPRESSION_UNKNOWN


class StreamingDecompressor:
    """Streaming decompressor for gzip and zstd formats.

    Data is decompressed chunk by chunk as it arrives from the registry.
    """

    def __init__(self, compression_type):
        """Initialize the decompressor.

        Args:
            compression_type: One of COMPRESSION_GZIP, COMPRESSION_ZSTD,
                or COMPRESSION_NONE.

        Raises:
            ValueError: If compression_type is not supported.
        """
        self.compression_type = compression_type

        if compression_type == constants.COMPRESSION_GZIP:
            # Use zlib with gzip header support (16 + MAX_WBITS)
            self._decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
        elif compression_type == constants.COMPRESSION_ZSTD:
            self._decompressor = zstd.ZstdDecompressor().decompressobj()
        elif compression_type == constants.COMPRESSION_NONE:
            self._decompressor = None
        else:
            raise ValueError(
                'Unsupported compression type: %s' % compression_type)

    def decompress(self, chunk):
        if self._decompressor is None:
            return chunk
        return self._decompressor.decompress(chunk)

    def flush(self):
        """Return any remaining buffered data."""
        if self._decompressor is None:
            return b''
        if self.compression_type == constants.COMPRESSION_GZIP:
            return self._decompressor.flush()
        # zstd doesn't have a flush method on decompressobj
        return b''
