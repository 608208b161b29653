import json
import logging
from pbr.version import VersionInfo
import requests


LOG = logging.getLogger(__name__)


class RootstrapError(Exception):
    pass


class APIException(RootstrapError):
    pass


class UnauthorizedException(APIException):
    pass


class TransportUnavailable(RootstrapError):
    pass


STATUS_CODES_TO_ERRORS = {
    401: UnauthorizedException
}


def get_user_agent():
    try:
        version = VersionInfo('rootstrap').version_string()
    except Exception:
        version = '0.0.0'
    return 'Mozilla/5.0 (Linux x86_64) rootstrap/%s' % version


def registry_url(registry, path, secure=True):
    moniker = 'https'
    if not secure:
        moniker = 'http'
    return '%s://%s/%s' % (moniker, registry, path.lstrip('/'))


def check_transport(url):
    """Make sure requests has a transport adapter for this URL."""
    try:
        requests.Session().get_adapter(url)
    except requests.exceptions.InvalidSchema as e:
        raise TransportUnavailable(
            'No HTTP transport available for %s: %s' % (url, e))


def request_url(method, url, headers=None, data=None, stream=False,
                auth=None, allowed=None):
    """Issue a request and map failure status codes to exceptions.

    Status codes listed in allowed are returned to the caller instead of
    raising, which lets callers inspect a challenge response.
    """
    if not headers:
        headers = {}
    headers.update({'User-Agent': get_user_agent()})
    if data:
        headers['Content-Type'] = 'application/json'
        data = json.dumps(data)
    r = requests.request(method, url,
                         data=data,
                         headers=headers,
                         stream=stream,
                         auth=auth)

    LOG.debug('-------------------------------------------------------')
    LOG.debug('API client requested: %s %s (stream=%s)'
              % (method, url, stream))
    for h in headers:
        if h == 'Authorization':
            LOG.debug('Header: %s = <redacted>' % h)
        else:
            LOG.debug('Header: %s = %s' % (h, headers[h]))
    LOG.debug('API client response: code = %s' % r.status_code)
    for h in r.headers:
        LOG.debug('Header: %s = %s' % (h, r.headers[h]))
    if not stream:
        if r.text:
            try:
                LOG.debug('Data:\n    %s'
                          % ('\n    '.join(json.dumps(json.loads(r.text),
                                                      indent=4,
                                                      sort_keys=True).split('\n'))))
            except ValueError:
                LOG.debug('Text:\n    %s'
                          % ('\n    '.join(r.text.split('\n'))))
    else:
        LOG.debug('Result content not logged for streaming requests')
    LOG.debug('-------------------------------------------------------')

    if allowed and r.status_code in allowed:
        return r

    if r.status_code in STATUS_CODES_TO_ERRORS:
        raise STATUS_CODES_TO_ERRORS[r.status_code](
            'API request failed', method, url, r.status_code, r.text, r.headers)

    if r.status_code != 200:
        raise APIException(
            'API request failed', method, url, r.status_code, r.text, r.headers)
    return r


def describe_api_error(e):
    """Render an APIException as a single human readable line."""
    if len(e.args) >= 4:
        return '%s %s returned HTTP %s' % (e.args[1], e.args[2], e.args[3])
    return str(e)
