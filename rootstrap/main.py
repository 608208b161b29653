import click
import logging
import requests
from shakenfist_utilities import logs
import sys

from rootstrap import constants
from rootstrap import pull
from rootstrap import reference
from rootstrap import util


LOG = logs.setup_console(__name__)


@click.command()
@click.argument('image', required=False)
@click.option('--verbose', is_flag=True)
@click.option('--platform', default=constants.DEFAULT_PLATFORM,
              show_default=True,
              help='Target platform as os/architecture[/variant]')
@click.option('--output', '-o', default=constants.DEFAULT_OUTPUT,
              show_default=True, type=click.Path(),
              help='Directory to extract the image filesystem into')
@click.option('--registry', default=constants.DEFAULT_REGISTRY,
              envvar='ROOTSTRAP_REGISTRY', show_default=True,
              help='Registry to use when IMAGE does not name one')
@click.option('--username', default=None, envvar='ROOTSTRAP_USERNAME',
              help='Username for registry authentication')
@click.option('--password', default=None, envvar='ROOTSTRAP_PASSWORD',
              help='Password for registry authentication')
@click.option('--insecure', is_flag=True, default=False,
              help='Use HTTP instead of HTTPS for registry connections')
@click.option('--digest-only', is_flag=True, default=False,
              help='Refuse tags, only pull images referenced by digest')
def cli(image=None, verbose=None, platform=None, output=None, registry=None,
        username=None, password=None, insecure=None, digest_only=None):
    """Pull IMAGE[:REF] from a registry and extract its filesystem.

    REF is a tag or a sha256 digest. Layers are applied in order and
    whiteouts are processed, leaving the merged image filesystem in the
    output directory.

    \b
    Examples:
      rootstrap busybox@sha256:<digest>
      rootstrap --platform linux/arm64/v8 -o ./alpine alpine:3.20
      rootstrap ghcr.io/owner/repo:v1.0
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
        LOG.setLevel(logging.DEBUG)

    if not image:
        click.echo(click.get_current_context().get_usage(), err=True)
        click.echo('Error: No image specified', err=True)
        sys.exit(2)

    try:
        image_ref = reference.parse_reference(image,
                                              default_registry=registry)
        target = reference.parse_platform(platform)
    except reference.ReferenceParseError as e:
        click.echo('Error: %s' % e, err=True)
        sys.exit(2)

    puller = pull.ImagePuller(
        image_ref, output, platform=target, secure=(not insecure),
        username=username, password=password,
        resolve_tags=(not digest_only))
    try:
        puller.pull()
    except util.APIException as e:
        click.echo('Error: %s' % util.describe_api_error(e), err=True)
        sys.exit(1)
    except (util.RootstrapError, requests.exceptions.RequestException,
            OSError) as e:
        click.echo('Error: %s' % e, err=True)
        sys.exit(1)

    click.echo('Extracted %s (%d layers) to %s'
               % (image, len(puller.layers), output))
