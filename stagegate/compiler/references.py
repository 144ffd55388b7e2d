"""Resolution of ``package.module:attribute`` references used in manifests."""

import importlib
from functools import lru_cache
from typing import Any

from stagegate.kernel.exceptions import ResolveError


@lru_cache(maxsize=256)
def resolve_reference(reference: str) -> Any:
    """Import ``package.module:attribute`` (attribute may be dotted).

    Examples
    --------
    >>> resolve_reference("os.path:join").__name__
    'join'

    Raises
    ------
    ResolveError
        If the reference is malformed, the module cannot be imported or
        the attribute does not exist
    """
    module_name, sep, attr_path = reference.partition(":")
    if not sep or not module_name or not attr_path:
        raise ResolveError(reference, "expected 'package.module:attribute'")

    try:
        target: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise ResolveError(reference, f"cannot import module '{module_name}': {e}") from e

    for part in attr_path.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise ResolveError(reference, f"'{module_name}' has no attribute '{attr_path}'") from e
    return target


def resolve_callable(reference: str) -> Any:
    """Resolve *reference* and check that the result is callable."""
    target = resolve_reference(reference)
    if not callable(target):
        raise ResolveError(reference, f"resolved to non-callable {type(target).__name__}")
    return target
