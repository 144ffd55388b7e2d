"""Concrete adapters for the kernel ports.

The kernel never imports these at module level; callers (the compiler, the
CLI, tests) choose and inject them.
"""
