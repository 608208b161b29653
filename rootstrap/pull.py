"""Pull an image from a registry and materialize its filesystem.

ImagePuller sequences the registry client and the union filesystem code:

    token -> digest -> layer list -> for each layer: fetch, extract, purge

Any failure aborts the whole run. Layers are applied strictly one at a time
in manifest order, because whiteouts in a layer refer to whatever the layers
below it left in the output directory.
"""

import logging
import tarfile

from rootstrap import auth
from rootstrap import constants
from rootstrap import layers as layer_fetcher
from rootstrap import manifest
from rootstrap import reference
from rootstrap import rootfs
from rootstrap import util


LOG = logging.getLogger(__name__)
LOG.setLevel(logging.INFO)


class ImagePuller(object):
    def __init__(self, image_ref, output_dir, platform=None, secure=True,
                 username=None, password=None, resolve_tags=True):
        """Prepare to pull an image.

        Args:
            image_ref: A reference.ImageReference.
            output_dir: The directory to build the filesystem in.
            platform: A reference.Platform, defaults to linux/amd64.
            secure: Use https rather than http to talk to the registry.
            username, password: Optional credentials for the token service.
            resolve_tags: Look tags up in the registry. If False, only
                digest references are accepted.
        """
        self.image_ref = image_ref
        self.output_dir = output_dir
        self.platform = platform or reference.parse_platform(
            constants.DEFAULT_PLATFORM)
        self.secure = secure
        self.username = username
        self.password = password
        self.resolve_tags = resolve_tags

        self.token = None
        self.digest = None
        self.layers = []
        self.whiteouts = 0

    @property
    def registry(self):
        return self.image_ref.registry

    @property
    def image(self):
        return self.image_ref.name

    def authenticate(self):
        if reference.is_docker_hub(self.registry):
            realm = constants.DEFAULT_AUTH_REALM
            service = constants.DEFAULT_AUTH_SERVICE
        else:
            challenge = auth.discover_realm(self.registry, secure=self.secure)
            if not challenge:
                return None
            realm, service = challenge

        self.token = auth.get_token(
            self.image, realm=realm, service=service,
            username=self.username, password=self.password)
        return self.token

    def resolve(self):
        ref = self.image_ref.ref
        if reference.is_digest(ref) or not self.resolve_tags:
            self.digest = manifest.resolve_digest(ref)
        else:
            self.digest = manifest.resolve_tag(
                self.registry, self.image, ref, self.token,
                secure=self.secure)
        return self.digest

    def apply(self, layer):
        """Fetch one layer and apply it to the output directory."""
        stream = layer_fetcher.fetch_layer(
            self.registry, self.image, layer, self.token, secure=self.secure)
        written = None
        try:
            try:
                written = rootfs.extract_layer(stream, self.output_dir)
                stream.verify()
            except tarfile.TarError as e:
                raise layer_fetcher.LayerError(
                    'Could not extract layer %s: %s' % (layer.digest, e))
            finally:
                stream.close()
        except Exception:
            # Even a failed layer must not leave whiteout markers behind, but
            # the original error is the one worth reporting
            try:
                rootfs.purge_whiteouts(self.output_dir, layer_paths=written)
            except OSError as e:
                LOG.warning('Could not process whiteouts of failed layer '
                            '%s: %s' % (layer.digest, e))
            raise

        self.whiteouts += rootfs.purge_whiteouts(
            self.output_dir, layer_paths=written)

    def pull(self):
        """Run the whole pull.

        Raises:
            util.RootstrapError: Or a subclass, on any fatal condition.
        """
        rootfs.check_output(self.output_dir)
        util.check_transport(
            util.registry_url(self.registry, '/v2/', secure=self.secure))

        LOG.info('Pulling %s from %s for %s'
                 % (self.image, self.registry,
                    reference.format_platform(self.platform)))
        self.authenticate()
        self.resolve()
        self.layers = manifest.get_layers(
            self.registry, self.image, self.digest, self.token,
            platform=self.platform, secure=self.secure)

        rootfs.create_output(self.output_dir)
        for idx, layer in enumerate(self.layers, start=1):
            LOG.info('Applying layer %d of %d' % (idx, len(self.layers)))
            self.apply(layer)

        LOG.info('Extracted %s@%s to %s (%d layers, %d whiteouts)'
                 % (self.image, self.digest, self.output_dir,
                    len(self.layers), self.whiteouts))
        return self.output_dir
