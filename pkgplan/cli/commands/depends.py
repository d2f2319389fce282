"""Package dependency commands: depends, rdepends."""

from ..helpers.transaction import load_context


def _show(args, reverse: bool) -> int:
    from ...core.cancel import CancelToken
    from ...core.errors import PlanError
    from .. import colors

    try:
        snapshot = load_context(args)
    except PlanError as e:
        print(colors.error(f"E: {e}"))
        return 1

    graph = snapshot.graph
    pkg = graph.find(args.package)
    if pkg is None:
        print(f"Package '{args.package}' not found")
        return 1

    cancel = CancelToken()
    try:
        if reverse:
            found = graph.get_requires(pkg, recursive=args.recursive, cancel=cancel)
        else:
            found = graph.get_depends(pkg, recursive=args.recursive, cancel=cancel)
    except KeyboardInterrupt:
        cancel.cancel()
        return 130

    if not found:
        what = "no reverse dependencies" if reverse else "no dependencies"
        print(f"{pkg.name}: {what}")
        return 0

    print(colors.bold(f"{pkg.name}:"))
    for dep, ver in found:
        state = colors.success(" [installed]") if dep.current is ver else ""
        print(f"  {dep.name} {colors.dim(ver.version)}{state}")
    return 0


def cmd_depends(args) -> int:
    """Handle depends command - show what a package depends on."""
    return _show(args, reverse=False)


def cmd_rdepends(args) -> int:
    """Handle rdepends command - show what depends on a package."""
    return _show(args, reverse=True)
