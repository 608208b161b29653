# Registry defaults. Docker Hub serves the registry API and the token service
# from different hosts.
DEFAULT_REGISTRY = 'registry-1.docker.io'
DEFAULT_AUTH_REALM = 'https://auth.docker.io/token'
DEFAULT_AUTH_SERVICE = 'registry.docker.io'
DEFAULT_NAMESPACE = 'library'
DEFAULT_TAG = 'latest'

DEFAULT_PLATFORM = 'linux/amd64'
DEFAULT_OUTPUT = './output'

# Registry host names which are all aliases for Docker Hub
DOCKER_HUB_ALIASES = {
    'docker.io',
    'index.docker.io',
    'registry.hub.docker.com',
    'registry-1.docker.io',
}

DIGEST_ALGORITHM = 'sha256'

# Union filesystem whiteout markers
WHITEOUT_PREFIX = '.wh.'
WHITEOUT_OPAQUE = '.wh..wh..opq'

# Compression type constants
COMPRESSION_GZIP = 'gzip'
COMPRESSION_ZSTD = 'zstd'
COMPRESSION_NONE = 'none'
COMPRESSION_UNKNOWN = 'unknown'

# Docker manifest media types
MEDIA_TYPE_DOCKER_MANIFEST_V2 = \
    'application/vnd.docker.distribution.manifest.v2+json'
MEDIA_TYPE_DOCKER_MANIFEST_LIST_V2 = \
    'application/vnd.docker.distribution.manifest.list.v2+json'

# Docker layer media types
MEDIA_TYPE_DOCKER_LAYER_GZIP = \
    'application/vnd.docker.image.rootfs.diff.tar.gzip'
MEDIA_TYPE_DOCKER_LAYER_ZSTD = \
    'application/vnd.docker.image.rootfs.diff.tar.zstd'

# OCI manifest media types
MEDIA_TYPE_OCI_MANIFEST = 'application/vnd.oci.image.manifest.v1+json'
MEDIA_TYPE_OCI_INDEX = 'application/vnd.oci.image.index.v1+json'

# OCI layer media types
MEDIA_TYPE_OCI_LAYER_GZIP = 'application/vnd.oci.image.layer.v1.tar+gzip'
MEDIA_TYPE_OCI_LAYER_ZSTD = 'application/vnd.oci.image.layer.v1.tar+zstd'
MEDIA_TYPE_OCI_LAYER_UNCOMPRESSED = 'application/vnd.oci.image.layer.v1.tar'

IMAGE_MANIFEST_TYPES = [
    MEDIA_TYPE_DOCKER_MANIFEST_V2,
    MEDIA_TYPE_OCI_MANIFEST,
]
MANIFEST_LIST_TYPES = [
    MEDIA_TYPE_DOCKER_MANIFEST_LIST_V2,
    MEDIA_TYPE_OCI_INDEX,
]

# Size of reads from streaming blob responses
CHUNK_SIZE = 8192
