"""Optional duecredit hooks, inert when duecredit is not installed.

Only the two collector calls torch-almo makes are provided: ``due.cite`` for
the package references in :mod:`torch_almo._citations` and ``due.dcite``
behind :func:`dcite`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import Callable


class _NoCitations:
    """Collector that records nothing."""

    def cite(self, *_args: Any, **_kwargs: Any) -> None:
        """Drop a package citation."""

    def dcite(
        self, *_args: Any, **_kwargs: Any
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Return a decorator that leaves the function untouched."""
        return lambda func: func


def _entry(*_args: Any, **_kwargs: Any) -> None:
    return None


try:
    from duecredit import BibTeX, Doi, due
except ImportError:
    due = _NoCitations()
    BibTeX = Doi = _entry
except Exception:
    logging.getLogger("duecredit").exception(
        "duecredit is installed but failed to import, citations are disabled"
    )
    due = _NoCitations()
    BibTeX = Doi = _entry


def dcite(
    doi: str, description: str | None = None, *, path: str | None = None
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Cite ``doi`` whenever the decorated function is called."""
    kwargs: dict[str, Any] = {}
    if description is not None:
        kwargs["description"] = description
    if path is not None:
        kwargs["path"] = path
    return due.dcite(Doi(doi), **kwargs)
