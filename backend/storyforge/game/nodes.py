"""分支故事节点图：写入、读取与祖先链分页遍历。"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any, Iterator, Optional, Sequence

from storyforge.errors import (
    ConflictError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from storyforge.game.spells import find_spell, spell_exists
from storyforge.game.users import UserDirectory, user_link
from storyforge.models import (
    CONTENT_VERSION,
    Atom,
    Content,
    Fork,
    ForkChild,
    Node,
    ParentLink,
    Paragraph,
    SpellRef,
)
from storyforge.storage.transaction import TransactionContext

logger = logging.getLogger(__name__)

DEFAULT_ROOT_PROPERTY = "world.default_root"

_WORD = re.compile(r"\b\w+\b")
_NODE_COLUMNS = (
    "n.id, n.parent_id, n.fork_position, n.fork_spell_id, "
    "n.created_at, n.created_by, n.content_json, n.content_version"
)


def create_node_content(text: str) -> Content:
    """纯文本转正文：每个非空行一个段落，原子为行内每个单词。"""
    paragraphs: list[Paragraph] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        atoms = [Atom(start=m.start(), length=len(m.group())) for m in _WORD.finditer(line)]
        paragraphs.append(Paragraph(text=line, atoms=atoms))
    return Content(paragraphs=paragraphs)


def create_root_node(content: Content) -> Node:
    return Node(content=content)


def dump_content(content: Content) -> str:
    document = {"version": CONTENT_VERSION, **content.model_dump()}
    return json.dumps(document, ensure_ascii=False)


def load_content(raw: str, version: int | None) -> Content:
    if version != CONTENT_VERSION:
        raise InternalError(f"Unsupported content version: {version}")
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InternalError("Node content is not valid JSON") from exc
    return Content.model_validate({"paragraphs": document.get("paragraphs", [])})


class NodeGraph:
    """节点图：森林结构，无环性只在写入时保证（父节点必须已存在）。"""

    def __init__(self, tx: TransactionContext):
        self.tx = tx

    def exists(self, node_id: str) -> bool:
        row = self.tx.fetch_one(
            "MATCH (n:StoryNode) WHERE n.id = $id RETURN n.id;",
            {"id": node_id},
        )
        return row is not None

    def _child_slots(self, node_id: str) -> tuple[Optional[str], list[tuple[str, int, str]]]:
        rows = self.tx.execute(
            "MATCH (p:StoryNode)-[c:Continues]->(n:StoryNode) WHERE p.id = $id "
            "RETURN n.id, c.fork_position, c.fork_spell_id;",
            {"id": node_id},
        )
        natural: Optional[str] = None
        forks: list[tuple[str, int, str]] = []
        for child_id, position, spell_id in rows:
            if position is None:
                natural = child_id
            else:
                forks.append((child_id, position, spell_id))
        forks.sort(key=lambda item: item[1])
        return natural, forks

    def _spell_link(self, spell_id: str):
        spell = find_spell(self.tx, spell_id)
        return spell if spell is not None else SpellRef(spell_id=spell_id)

    def children(self, node_id: str) -> tuple[Optional[str], list[ForkChild]]:
        natural, forks = self._child_slots(node_id)
        fork_children = [
            ForkChild(
                node_id=child_id,
                fork=Fork(position=position, spell=self._spell_link(spell_id)),
            )
            for child_id, position, spell_id in forks
        ]
        return natural, fork_children

    def _node_from_row(self, row: Sequence[Any]) -> Node:
        (
            node_id,
            parent_id,
            fork_position,
            fork_spell_id,
            created_at,
            created_by,
            content_json,
            content_version,
        ) = row
        parent = None
        if parent_id:
            fork = None
            if fork_position is not None:
                fork = Fork(position=fork_position, spell=self._spell_link(fork_spell_id))
            parent = ParentLink(node_id=parent_id, fork=fork)
        natural_child, fork_children = self.children(node_id)
        return Node(
            node_id=node_id,
            parent=parent,
            natural_child=natural_child,
            fork_children=fork_children,
            created_at=datetime.fromisoformat(created_at) if created_at else None,
            created_by=user_link(self.tx, created_by) if created_by else None,
            content=load_content(content_json, content_version),
        )

    def fetch(self, node_id: str) -> Node:
        row = self.tx.fetch_one(
            f"MATCH (n:StoryNode) WHERE n.id = $id RETURN {_NODE_COLUMNS};",
            {"id": node_id},
        )
        if row is None:
            raise NotFoundError(f"Node not found: node_id={node_id}")
        return self._node_from_row(row)

    def fetch_current_position(self, user_id: str) -> Node:
        user = UserDirectory(self.tx).fetch_user(user_id)
        return self.fetch(user.in_node)

    def insert(self, node: Node) -> Node:
        """写入节点。父节点必须已存在；无父节点时登记到根索引。"""
        props: dict[str, Any] = {
            "id": node.node_id,
            "content_json": dump_content(node.content),
            "content_version": CONTENT_VERSION,
            "paragraph_count": node.paragraph_count,
        }
        if node.created_by is not None:
            props["created_by"] = node.created_by.identifier()
            props["created_at"] = self.tx.timestamp

        fork = node.parent.fork if node.parent is not None else None
        if node.parent is not None:
            parent_id = node.parent.node_id
            if not self.exists(parent_id):
                raise NotFoundError(f"Parent node not found: node_id={parent_id}")
            natural, forks = self._child_slots(parent_id)
            if fork is None:
                if natural is not None:
                    raise ValidationError(
                        f"Node already has a natural child: node_id={parent_id} "
                        f"child_id={natural}"
                    )
            else:
                spell_id = fork.spell.identifier()
                if not spell_exists(self.tx, spell_id):
                    raise NotFoundError(f"Spell not found: spell_id={spell_id}")
                if any(position == fork.position for _, position, _ in forks):
                    raise ValidationError(
                        f"Fork position already taken: node_id={parent_id} "
                        f"position={fork.position}"
                    )
                props["fork_position"] = fork.position
                props["fork_spell_id"] = spell_id
            props["parent_id"] = parent_id

        assignments = ", ".join(f"{key}: ${key}" for key in props)
        try:
            self.tx.execute(f"CREATE (:StoryNode {{{assignments}}});", props)
        except ConflictError as exc:
            raise ValidationError(f"Node already exists: node_id={node.node_id}") from exc

        if node.parent is not None:
            edge: dict[str, Any] = {
                "parent_id": node.parent.node_id,
                "child_id": node.node_id,
            }
            edge_props = ""
            if fork is not None:
                edge["fork_position"] = props["fork_position"]
                edge["fork_spell_id"] = props["fork_spell_id"]
                edge_props = (
                    " {fork_position: $fork_position, fork_spell_id: $fork_spell_id}"
                )
            self.tx.execute(
                "MATCH (p:StoryNode), (c:StoryNode) "
                "WHERE p.id = $parent_id AND c.id = $child_id "
                f"CREATE (p)-[:Continues{edge_props}]->(c);",
                edge,
            )
        else:
            self._register_root(node.node_id)
        return self.fetch(node.node_id)

    def _register_root(self, node_id: str) -> None:
        row = self.tx.fetch_one("MATCH (r:RootIndex) RETURN MAX(r.seq);")
        seq = (row[0] if row and row[0] is not None else 0) + 1
        self.tx.execute(
            "CREATE (:RootIndex {node_id: $id, seq: $seq});",
            {"id": node_id, "seq": seq},
        )
        logger.info("registered root node %s seq=%d", node_id, seq)

    def list_roots(self) -> list[str]:
        rows = self.tx.execute("MATCH (r:RootIndex) RETURN r.node_id, r.seq;")
        return [row[0] for row in sorted(rows, key=lambda item: (item[1], item[0]))]

    def default_root(self) -> str:
        """世界初始化时指定的默认根；未指定时取最早创建的根。"""
        designated = self.tx.get_property(DEFAULT_ROOT_PROPERTY)
        if designated:
            return designated
        roots = self.list_roots()
        if not roots:
            raise NotFoundError("No root node registered")
        return roots[0]

    def traverse_ancestors(
        self, start_id: str, limit_nodes: int, limit_paragraphs: int
    ) -> Iterator[Node]:
        """沿 parent 链逐个产出节点，起始节点总是第一个。

        累计节点数达到 limit_nodes、累计段落数达到 limit_paragraphs
        或到达根节点时停止；只走父链，不进入兄弟分支。
        """
        node = self.fetch(start_id)
        yield node
        num_nodes = 1
        num_paragraphs = node.paragraph_count
        while num_nodes < limit_nodes and num_paragraphs < limit_paragraphs:
            if node.parent is None:
                break
            node = self.fetch(node.parent.node_id)
            num_nodes += 1
            num_paragraphs += node.paragraph_count
            yield node
