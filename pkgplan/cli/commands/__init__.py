"""CLI command modules."""

from .depends import (
    cmd_depends,
    cmd_rdepends,
)
from .install import (
    cmd_install,
)
from .remove import (
    cmd_remove,
)
from .upgrade import (
    cmd_upgrade,
)

__all__ = ['cmd_depends', 'cmd_rdepends', 'cmd_install', 'cmd_remove', 'cmd_upgrade']
