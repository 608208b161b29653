"""Extract string fields from registry JSON documents.

Registry responses are small JSON documents where we only care about a
handful of string values (a token, a list of digests). These helpers return
every string stored under a given key, in the order the values appear in the
document.

Documents are parsed with the json module, so nested objects with the same
key name are told apart by structure. When the text is not a complete JSON
document (a truncated body, or a region cut out of a larger document) we
fall back to scanning for "key": "value" pairs in the raw text.
"""

import json
import logging
import re


LOG = logging.getLogger(__name__)


def _field_re(key):
    return re.compile(r'"%s"\s*:\s*"([^"]*)"' % re.escape(key))


def scan(text, key):
    """Return the values of every "key": "value" pair in text, in order.

    This is a textual scan, not a parser. Values containing a double quote
    are not matched, and keys in nested objects are not distinguished from
    top level keys.
    """
    return _field_re(key).findall(text)


def _walk(node, key):
    if isinstance(node, dict):
        for k, v in node.items():
            if k == key and isinstance(v, str):
                yield v
            else:
                yield from _walk(v, key)
    elif isinstance(node, list):
        for item in node:
            yield from _walk(item, key)


def _find(node, key):
    """Return the value of the first occurrence of key, depth first."""
    if isinstance(node, dict):
        for k, v in node.items():
            if k == key:
                return v
            found = _find(v, key)
            if found is not None:
                return found
    elif isinstance(node, list):
        for item in node:
            found = _find(item, key)
            if found is not None:
                return found
    return None


def _parse(text):
    if isinstance(text, bytes):
        text = text.decode('utf-8', errors='replace')
    try:
        return text, json.loads(text)
    except ValueError:
        LOG.debug('Document is not valid JSON, falling back to text scan')
        return text, None


def extract(text, key):
    """Return every string value stored under key, in document order."""
    text, doc = _parse(text)
    if doc is None:
        return scan(text, key)
    return list(_walk(doc, key))


def extract_region(text, marker, key):
    """Return the values of key found within the value of marker.

    Anything which appears in the document before the marker key (for
    example the digest of an image config, which sits before "layers" in a
    manifest) is ignored.
    """
    text, doc = _parse(text)
    if doc is None:
        idx = text.find('"%s"' % marker)
        if idx == -1:
            return []
        return scan(text[idx:], key)

    region = _find(doc, marker)
    if region is None:
        return []
    return list(_walk(region, key))
