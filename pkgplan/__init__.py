"""
pkgplan - Package transaction planner

Resolves install/remove/upgrade requests into a consistent plan and
carries it out:
- Incremental state overlay over a read-only package graph
- Worklist constraint resolver with protected packages
- Acquire & apply executor with trust, space and lock preconditions
"""

__version__ = "0.3.0"
__author__ = "pkgplan contributors"
