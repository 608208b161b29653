import json
import unittest
from unittest import mock
from urllib.parse import urlparse, parse_qs

from rootstrap import auth
from rootstrap import constants
from rootstrap.tests import helpers


class GetTokenTestCase(unittest.TestCase):
    @mock.patch('rootstrap.util.requests.request')
    def test_get_token(self, mock_request):
        mock_request.return_value = helpers.make_response(
            200, json.dumps({'token': 'abc', 'access_token': 'abc',
                             'expires_in': 300}))

        self.assertEqual('abc', auth.get_token('library/busybox'))

        args, kwargs = mock_request.call_args
        self.assertEqual('GET', args[0])
        url = urlparse(args[1])
        self.assertEqual('https://auth.docker.io/token',
                         '%s://%s%s' % (url.scheme, url.netloc, url.path))
        self.assertEqual(
            {'service': ['registry.docker.io'],
             'scope': ['repository:library/busybox:pull']},
            parse_qs(url.query))
        self.assertIsNone(kwargs['auth'])
        self.assertNotIn('Authorization', kwargs['headers'])

    @mock.patch('rootstrap.util.requests.request')
    def test_credentials(self, mock_request):
        mock_request.return_value = helpers.make_response(
            200, '{"token": "abc"}')

        auth.get_token('owner/repo', username='user', password='pass')

        self.assertEqual(('user', 'pass'), mock_request.call_args[1]['auth'])

    @mock.patch('rootstrap.util.requests.request')
    def test_access_token_only(self, mock_request):
        mock_request.return_value = helpers.make_response(
            200, '{"access_token": "xyz"}')

        self.assertEqual('xyz', auth.get_token(
            'owner/repo', realm='https://ghcr.io/token', service='ghcr.io'))

    @mock.patch('rootstrap.util.requests.request')
    def test_no_token(self, mock_request):
        mock_request.return_value = helpers.make_response(
            200, '{"details": "insufficient scope"}')

        with self.assertRaises(auth.AuthenticationError):
            auth.get_token('library/nothere')

    @mock.patch('rootstrap.util.requests.request')
    def test_empty_token(self, mock_request):
        mock_request.return_value = helpers.make_response(
            200, '{"token": ""}')

        with self.assertRaises(auth.AuthenticationError):
            auth.get_token('library/busybox')

    @mock.patch('rootstrap.util.requests.request')
    def test_token_service_error(self, mock_request):
        mock_request.return_value = helpers.make_response(503, 'down')

        with self.assertRaises(auth.AuthenticationError):
            auth.get_token('library/busybox')


class ChallengeTestCase(unittest.TestCase):
    def test_parse_challenge(self):
        self.assertEqual(
            ('https://ghcr.io/token', 'ghcr.io'),
            auth.parse_challenge(
                'Bearer realm="https://ghcr.io/token",service="ghcr.io",'
                'scope="repository:user/image:pull"'))

    def test_parse_challenge_without_service(self):
        self.assertEqual(
            ('https://example.com/token', None),
            auth.parse_challenge('Bearer realm="https://example.com/token"'))

    def test_parse_challenge_not_bearer(self):
        self.assertIsNone(auth.parse_challenge('Basic realm="registry"'))
        self.assertIsNone(auth.parse_challenge(''))
        self.assertIsNone(auth.parse_challenge('Bearer service="x"'))

    @mock.patch('rootstrap.util.requests.request')
    def test_discover_realm(self, mock_request):
        mock_request.return_value = helpers.make_response(
            401, '{}', headers={
                'Www-Authenticate':
                    'Bearer realm="https://ghcr.io/token",service="ghcr.io"'})

        self.assertEqual(('https://ghcr.io/token', 'ghcr.io'),
                         auth.discover_realm('ghcr.io'))
        self.assertEqual('https://ghcr.io/v2/', mock_request.call_args[0][1])

    @mock.patch('rootstrap.util.requests.request')
    def test_discover_realm_anonymous(self, mock_request):
        mock_request.return_value = helpers.make_response(200, '{}')

        self.assertIsNone(auth.discover_realm('localhost:5000', secure=False))
        self.assertEqual('http://localhost:5000/v2/',
                         mock_request.call_args[0][1])

    @mock.patch('rootstrap.util.requests.request')
    def test_discover_realm_basic_only(self, mock_request):
        mock_request.return_value = helpers.make_response(
            401, '{}', headers={'Www-Authenticate': 'Basic realm="x"'})

        with self.assertRaises(auth.AuthenticationError):
            auth.discover_realm('example.com')


class DefaultsTestCase(unittest.TestCase):
    def test_docker_hub_defaults(self):
        self.assertEqual('https://auth.docker.io/token',
                         constants.DEFAULT_AUTH_REALM)
        self.assertEqual('registry.docker.io', constants.DEFAULT_AUTH_SERVICE)


if __name__ == '__main__':
    unittest.main()
