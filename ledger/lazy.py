from typing import AsyncIterator, Awaitable, Callable, Iterable, Iterator, List, Optional, Tuple

from ledger.domain import Transaction

# page number (None for the first page) -> (transactions, next page or None)
PageFetcher = Callable[[Optional[int]], Awaitable[Tuple[List[Transaction], Optional[int]]]]


def iter_transactions(
    trans: Iterable[Transaction], pred: Callable[[Transaction], bool]
) -> Iterator[Transaction]:
    for t in trans:
        if pred(t):
            yield t


class TransactionPages:
    """Lazy, restartable sequence over a paginated source.

    Pages are fetched only as iteration reaches them, and every new
    ``async for`` starts again from the first page.
    """

    def __init__(self, fetch_page: PageFetcher, pred: Callable[[Transaction], bool] = lambda t: True):
        self._fetch_page = fetch_page
        self._pred = pred

    def __aiter__(self) -> AsyncIterator[Transaction]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Transaction]:
        page: Optional[int] = None
        while True:
            items, next_page = await self._fetch_page(page)
            for t in iter_transactions(items, self._pred):
                yield t
            if next_page is None:
                return
            page = next_page

    async def collect(self) -> List[Transaction]:
        return [t async for t in self]
