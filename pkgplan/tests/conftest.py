"""Shared fixtures: build package universes from compact dicts."""

import pytest

from pkgplan.core.snapshot import graph_from_dict

MIRROR = 'https://mirror.example.org/main'


def expand_packages(packages):
    """Expand {name: {'installed': v, 'versions': {v: {relations}}}} into snapshot entries.

    A version dict may carry 'archive' (default 'main', None for an
    installed-only version), 'size' and 'checksum'; every other key is a
    relation list.
    """
    entries = []
    for name, info in packages.items():
        versions = []
        for version, fields in info.get('versions', {}).items():
            fields = dict(fields)
            archive = fields.pop('archive', 'main')
            entry = {
                'version': version,
                'size': fields.pop('size', 100),
                'checksum': fields.pop('checksum', ''),
            }
            if archive:
                entry['archive'] = archive
                entry['filename'] = f"{name}-{version}.pkg"
            entry.update(fields)
            versions.append(entry)
        entries.append({
            'name': name,
            'arch': 'x86_64',
            'installed': info.get('installed'),
            'auto': info.get('auto', False),
            'selection': info.get('selection', 'normal'),
            'versions': versions,
        })
    return entries


@pytest.fixture
def universe():
    """Factory returning a Snapshot (graph + policy)."""
    def build(packages, origins=None, pins=(), holds=()):
        data = {
            'origins': origins if origins is not None else [
                {'archive': 'main', 'uri': MIRROR, 'trusted': True}],
            'pins': list(pins),
            'holds': list(holds),
            'packages': expand_packages(packages),
        }
        return graph_from_dict(data)
    return build
