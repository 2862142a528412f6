"""Core functionality for invoking the external build tool."""

from .invoker import BuildFlags, BuildInvoker, EsbuildInvoker, BuildInvokerError, BuildTimeoutError

__all__ = [
    'BuildFlags',
    'BuildInvoker',
    'EsbuildInvoker',
    'BuildInvokerError',
    'BuildTimeoutError'
]
