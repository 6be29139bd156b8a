"""Read-only views over the folder forest: descendants, ancestors and paths."""
from __future__ import annotations

from collections import deque
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Folder
from .errors import DatastoreError

PATH_SEPARATOR = " / "

ANY_SCOPE = object()


class FolderTree:
    """Adjacency view of folders, built once per request.

    The stored ``parent_id`` graph is expected to be a forest, but every walk
    tracks visited ids so a malformed cycle in the table cannot hang a request.
    """

    def __init__(self, rows: Iterable[Tuple[str, Optional[str], str]]) -> None:
        self._parents: Dict[str, Optional[str]] = {}
        self._names: Dict[str, str] = {}
        self._children: Dict[str, List[str]] = {}
        for folder_id, parent_id, name in rows:
            self._parents[folder_id] = parent_id
            self._names[folder_id] = name
        for folder_id, parent_id in self._parents.items():
            if parent_id is not None:
                self._children.setdefault(parent_id, []).append(folder_id)
        for children in self._children.values():
            children.sort(key=lambda child: (self._names[child].lower(), child))

    @classmethod
    def load(cls, session: Session, character_id: Any = ANY_SCOPE) -> "FolderTree":
        query = session.query(Folder.id, Folder.parent_id, Folder.name)
        if character_id is not ANY_SCOPE:
            query = query.filter(Folder.character_id == character_id)
        try:
            rows = query.all()
        except SQLAlchemyError as exc:
            raise DatastoreError("Unable to load folders.") from exc
        return cls(rows)

    def __contains__(self, folder_id: object) -> bool:
        return folder_id in self._parents

    def __len__(self) -> int:
        return len(self._parents)

    def ids(self) -> List[str]:
        return list(self._parents)

    def parent_of(self, folder_id: str) -> Optional[str]:
        return self._parents.get(folder_id)

    def children_of(self, folder_id: str) -> List[str]:
        return list(self._children.get(folder_id, ()))

    def descendants_breadth_first(self, root_id: str) -> List[str]:
        """Descendants of ``root_id`` level by level, root excluded."""
        ordered: List[str] = []
        visited: Set[str] = {root_id}
        queue = deque(self._children.get(root_id, ()))
        while queue:
            folder_id = queue.popleft()
            if folder_id in visited:
                continue
            visited.add(folder_id)
            ordered.append(folder_id)
            queue.extend(self._children.get(folder_id, ()))
        return ordered

    def descendant_ids(self, root_id: str) -> Set[str]:
        return set(self.descendants_breadth_first(root_id))

    def ancestor_ids(self, folder_id: Optional[str]) -> List[str]:
        """Parent chain of ``folder_id``, nearest first."""
        if not folder_id:
            return []
        ancestors: List[str] = []
        seen: Set[str] = {folder_id}
        current = self._parents.get(folder_id)
        while current is not None and current not in seen:
            seen.add(current)
            ancestors.append(current)
            current = self._parents.get(current)
        return ancestors

    def would_cycle(self, folder_id: str, proposed_parent_id: Optional[str]) -> bool:
        """True when ``folder_id`` is ``proposed_parent_id`` or one of its ancestors."""
        if proposed_parent_id is None:
            return False
        if proposed_parent_id == folder_id:
            return True
        return folder_id in self.ancestor_ids(proposed_parent_id)

    def path(self, folder_id: Optional[str]) -> List[str]:
        if not folder_id or folder_id not in self._parents:
            return []
        chain = [folder_id, *self.ancestor_ids(folder_id)]
        return [self._names[item] for item in reversed(chain) if item in self._names]

    def path_string(self, folder_id: Optional[str], separator: str = PATH_SEPARATOR) -> str:
        return separator.join(self.path(folder_id))

    def build_tree(self, extra: Optional[Dict[str, Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
        """Nest folders under their parents.

        Folders whose parent is missing from this tree are treated as roots.
        ``extra`` maps folder ids to additional keys merged into each node.
        """
        extra = extra or {}
        nodes: Dict[str, Dict[str, Any]] = {}

        def node(folder_id: str) -> Dict[str, Any]:
            nodes[folder_id] = {
                "id": folder_id,
                "name": self._names[folder_id],
                "parent_id": self._parents[folder_id],
                **extra.get(folder_id, {}),
                "children": [],
            }
            return nodes[folder_id]

        forest: List[Dict[str, Any]] = []
        roots = sorted(
            (
                folder_id
                for folder_id, parent_id in self._parents.items()
                if parent_id is None or parent_id not in self._parents
            ),
            key=lambda item: (self._names[item].lower(), item),
        )
        # Iterative; folder chains may be deeper than the recursion limit.
        for root_id in roots:
            forest.append(node(root_id))
            stack = [root_id]
            while stack:
                parent_id = stack.pop()
                for child in self._children.get(parent_id, ()):
                    if child in nodes:
                        continue
                    nodes[parent_id]["children"].append(node(child))
                    stack.append(child)
        return forest
