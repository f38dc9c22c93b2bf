from __future__ import annotations

import typing as t

_T = t.TypeVar("_T")
_U = t.TypeVar("_U")


class AsyncStream(t.AsyncIterable[_T], t.Generic[_T]):
    """Pull-based async stream of backend fragments.

    Wraps an async iterable source, typically the text fragments of a
    streaming backend response. The first iteration consumes the source and
    caches every item, later iterations replay the cache. An exception from
    the source is recorded and re-raised to the consumer, also on replay, which
    is how transport failures reach the caller mid-stream.

    Type Parameters:
        _T: The type of items emitted by this stream.

    Example:
        ```python
        stream = await backend.stream(history)

        # Print fragments as they arrive
        async for fragment in stream:
            print(fragment, end="", flush=True)

        # Replays from cache, the source is not consumed twice
        answer = await stream.text()
        ```
    """

    def __init__(self, source: t.AsyncIterable[_T]):
        self._source = source
        self._is_consumed = False
        self._items = []  # type: t.List[_T]
        self._error = None  # type: t.Optional[Exception]

    async def __aiter__(self) -> t.AsyncIterator[_T]:  # pylint: disable=invalid-overridden-method
        """Iterate over stream items, caching on first pass."""
        if self._is_consumed:
            for item in self._items:
                yield item
            if self._error is not None:
                raise self._error
            return

        self._is_consumed = True
        try:
            async for item in self._source:
                self._items.append(item)
                yield item

        except Exception as e:
            self._error = e
            raise

    async def reduce(self, func: t.Callable[[_U, _T], _U], initial: _U) -> _U:
        """Reduce stream to single value.

        Args:
            func: Reducer function (accumulator, item) -> new_accumulator.
            initial: Initial accumulator value.

        Returns:
            Final accumulated value.
        """
        result = initial
        async for item in self:
            result = func(result, item)
        return result

    async def text(self) -> str:
        """Consume the stream and join its items as text."""
        return await self.reduce(lambda acc, item: acc + str(item), "")

