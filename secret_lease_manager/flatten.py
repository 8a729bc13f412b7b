# -*- coding: utf-8 -*-
"""Flattening of JSON like secret documents into property maps.

    >>> flatten({"db": {"user": "app", "hosts": ["a", "b"]}})
    {'db.user': 'app', 'db.hosts[0]': 'a', 'db.hosts[1]': 'b'}

Leaf values are kept as they are. Empty maps and lists produce no keys.
Top level keys are kept as they are, nested keys are joined into strings, so
flattening a flat map returns an equal map.
"""

from collections.abc import Mapping

_ROOT = object()


def flatten(source):
    assert isinstance(source, Mapping), "Can only flatten a mapping"
    result = {}
    _flatten_mapping(_ROOT, source, result)
    return result


def _flatten_mapping(prefix, source, result):
    for key, value in source.items():
        _flatten_element(key if prefix is _ROOT else f"{prefix}.{key}", value, result)


def _flatten_element(prefix, value, result):
    if isinstance(value, Mapping):
        _flatten_mapping(prefix, value, result)
    elif isinstance(value, (list, tuple)):
        for index, element in enumerate(value):
            _flatten_element(f"{prefix}[{index}]", element, result)
    else:
        result[prefix] = value
