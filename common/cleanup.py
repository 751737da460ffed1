"""
Cleanup handles for background work started during database setup.

Every long-lived task (change-feed watcher, topology subscription) is
represented by a handle with a ``close()`` method. A CompositeCleanup
collects them so callers get back exactly one thing to close.
"""

from typing import Callable, List, Optional, Union

from common.logging_config import get_logger

logger = get_logger(__name__)


class CleanupHandle:
    """
    Base class for something that can be stopped.

    Subclasses implement ``_close()``. ``close()`` guarantees the body runs
    at most once.
    """

    def __init__(self):
        self.closed = False

    def close(self) -> None:
        """Stop the underlying resource. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        self._close()

    def _close(self) -> None:
        pass

    def __call__(self) -> None:
        self.close()

    def __enter__(self) -> 'CleanupHandle':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class NullCleanup(CleanupHandle):
    """Handle with nothing behind it."""
    pass


class FunctionCleanup(CleanupHandle):
    """Handle that runs a plain callable when closed."""

    def __init__(self, func: Callable[[], None]):
        super().__init__()
        self._func = func

    def _close(self) -> None:
        self._func()


Cleanup = Union[CleanupHandle, Callable[[], None]]


class CompositeCleanup(CleanupHandle):
    """
    Handle that owns other handles.

    Children are closed in registration order. A child that raises does not
    stop the others from closing; the first error is re-raised afterwards.
    """

    def __init__(self, children: Optional[List[Cleanup]] = None):
        super().__init__()
        self._children: List[CleanupHandle] = []
        for child in children or []:
            self.add(child)

    def __len__(self) -> int:
        return len(self._children)

    def add(self, child: Cleanup) -> CleanupHandle:
        """
        Register a child handle.

        Args:
            child: A CleanupHandle, or any callable taking no arguments

        Returns:
            The registered handle
        """
        handle = child if isinstance(child, CleanupHandle) else FunctionCleanup(child)
        if self.closed:
            handle.close()
        else:
            self._children.append(handle)
        return handle

    def _close(self) -> None:
        first_error: Optional[BaseException] = None
        for child in self._children:
            try:
                child.close()
            except Exception as e:
                logger.error(f"Error while closing {type(child).__name__}: {e}", exc_info=True)
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error
