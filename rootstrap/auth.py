# Bearer token exchange with a registry token service. See
# https://distribution.github.io/distribution/spec/auth/token/ for the
# protocol. Tokens are scoped to a single repository and the pull action.

import logging
import re
from urllib.parse import urlencode

from rootstrap import constants
from rootstrap import jsonfields
from rootstrap import util


LOG = logging.getLogger(__name__)
LOG.setLevel(logging.INFO)

CHALLENGE_RE = re.compile(r'(\w+)="([^"]*)"')


class AuthenticationError(util.RootstrapError):
    pass


def parse_challenge(header):
    """Parse a Www-Authenticate bearer challenge.

    Returns:
        A tuple of (realm, service), or None if this is not a bearer
        challenge. service may be None.
    """
    if not header:
        return None
    scheme, _, params = header.strip().partition(' ')
    if scheme.lower() != 'bearer':
        return None
    values = dict(CHALLENGE_RE.findall(params))
    if 'realm' not in values:
        return None
    return values['realm'], values.get('service')


def discover_realm(registry, secure=True):
    """Ask a registry where its token service lives.

    Returns:
        (realm, service), or None if the registry allows anonymous access
        without a token.
    """
    url = util.registry_url(registry, '/v2/', secure=secure)
    r = util.request_url('GET', url, allowed=[401])
    if r.status_code == 200:
        LOG.info('Registry %s does not require a token' % registry)
        return None

    challenge = parse_challenge(r.headers.get('Www-Authenticate', ''))
    if not challenge:
        raise AuthenticationError(
            'Registry %s requires authentication but did not offer a bearer '
            'token service' % registry)
    return challenge


def get_token(image_name, realm=constants.DEFAULT_AUTH_REALM,
              service=constants.DEFAULT_AUTH_SERVICE,
              username=None, password=None):
    """Exchange an image name for a pull token.

    Raises:
        AuthenticationError: If the token service did not return a token.
            This covers both an unavailable service and a repository which
            does not exist or is not visible to us.
    """
    params = {}
    if service:
        params['service'] = service
    params['scope'] = 'repository:%s:pull' % image_name
    auth_url = '%s?%s' % (realm, urlencode(params, safe=':/'))

    auth = None
    if username and password:
        auth = (username, password)

    LOG.info('Requesting pull token for %s' % image_name)
    try:
        r = util.request_url('GET', auth_url, auth=auth)
    except util.APIException as e:
        raise AuthenticationError(
            'Token request for %s failed: %s'
            % (image_name, util.describe_api_error(e)))

    tokens = jsonfields.extract(r.text, 'token')
    if not tokens or not tokens[0]:
        tokens = jsonfields.extract(r.text, 'access_token')
    if not tokens or not tokens[0]:
        raise AuthenticationError(
            'No token returned for %s, the image may not exist or you may '
            'not have access to it' % image_name)
    return tokens[0]
