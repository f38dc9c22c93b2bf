from __future__ import annotations

import functools as ft
import inspect
import types
import typing as t


@ft.cache
def _get_func_params(fn: t.Callable[..., t.Any]) -> set[str]:
    return set(inspect.signature(fn).parameters.keys())


def filter_kwargs(fn: t.Callable[..., t.Any], kwargs: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
    """Filter out invalid keyword arguments for a given function by
    comparing the provided keyword arguments to the function's
    signature. Only valid keyword arguments are returned.

    Args:
        fn: The function to filter keyword arguments for.
        kwargs: The keyword arguments to filter.

    Returns:
        The filtered keyword arguments with valid parameter names only.
    """
    valid_params = _get_func_params(fn)  # type: ignore

    return {
        key: value
        for key, value in kwargs.items()
        if key in valid_params and key not in {"self", "cls"}
    }


class Unset:
    """A singleton class representing an unset value.

    Used to tell "not provided" apart from an explicit None. It behaves
    as a falsy value.
    """

    __slots__ = ()

    def __repr__(self) -> str:
        return "<UNSET>"

    def __bool__(self) -> bool:
        return False

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Unset)

    def __hash__(self) -> int:
        return hash("UNSET")


UNSET = Unset()


def preview(text: str | None, limit: int = 100) -> str:
    """Shorten text for log lines, marking the cut with an ellipsis."""
    if not text:
        return ""
    text = text.replace("\n", " ")
    return text if len(text) <= limit else text[:limit] + "..."


class AsyncContextMixin:
    """A mixin class that provides asynchronous context manager
    functionality.

    Examples:
        ```python
        class MyBackend(AsyncContextMixin):
            async def init(self) -> None:
                # Open connections
                pass

            async def close(self) -> None:
                # Release connections
                pass


        async with MyBackend() as backend:
            ...
        ```
    """

    async def init(self) -> None: ...
    async def close(self) -> None: ...

    async def __aenter__(self) -> t.Self:
        await self.init()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        traceback: types.TracebackType | None,
    ) -> t.Literal[False]:
        await self.close()
        return False
