"""
Generic graph walks over opaque, hashable node handles.

Both walks are used on the source graph (topological ordering) and on the
target graph (cleanup and acyclicity checks).
"""

from collections import deque
from typing import Callable, Deque, Dict, Hashable, Iterable, Set, TypeVar

from .errors import ErrorCode, StructuralError

N = TypeVar("N", bound=Hashable)


def dfs(
    root: N,
    get_next: Callable[[N], Iterable[N]],
    visit: Callable[[N], bool],
) -> Set[N]:
    """Depth-first walk from ``root``.

    Every reachable node is visited at most once. When ``visit`` returns
    False the node's successors are not pushed. Sibling order follows stack
    discipline and must not be relied upon.

    Returns:
        The set of visited nodes.
    """
    visited: Set[N] = set()
    stack = [root]
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)

        if not visit(current):
            continue

        for nxt in get_next(current):
            stack.append(nxt)
    return visited


def bfs(
    root: N,
    get_num_entries: Callable[[N], int],
    visit: Callable[[N], bool],
    move_forward: Callable[[Deque[N], N], None],
) -> None:
    """Breadth-first walk that processes a node only after all its entries.

    A node is processed once it has been dequeued ``get_num_entries(node)``
    times; the root needs exactly one arrival. After processing, ``visit`` is
    called and, if it returns True, ``move_forward(queue, node)`` enqueues the
    node's dependents (once per dependency edge).

    Raises:
        StructuralError: a node arrives more often than it declares (E006), or
            can never collect all of its arrivals (E007).
    """
    queue: Deque[N] = deque([root])
    visits: Dict[N, int] = {}
    required: Dict[N, int] = {}
    while queue:
        current = queue.popleft()

        num_entries = 1 if current is root else get_num_entries(current)
        required[current] = num_entries

        count = visits.get(current, 0) + 1
        visits[current] = count
        if count > num_entries:
            raise StructuralError(
                ErrorCode.E006,
                f"encountered loop at {current!r}",
            )

        if count < num_entries:
            if not queue:
                raise StructuralError(
                    ErrorCode.E007,
                    f"{current!r} should be visited only after all predecessors, "
                    f"but it is not available through all of them",
                )
            continue

        if not visit(current):
            continue

        move_forward(queue, current)

    pending = [n for n, count in visits.items() if count < required[n]]
    if pending:
        raise StructuralError(
            ErrorCode.E007,
            f"{pending[0]!r} should be visited only after all predecessors, "
            f"but it is not available through all of them",
        )
