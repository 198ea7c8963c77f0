# infrastructure/knowledge_graph.py
"""
In-memory entity graph backed by a networkx DiGraph.

Nodes are entity ids carrying the KnowledgeGraphEntity object; edges carry
relation type and strength. Retrieval only reads the graph. `load_entities`
is the hook the populating collaborator uses.
"""
import logging
import re
from collections import deque
from typing import Iterable, List, Optional

import networkx as nx

from adaptive_rag.config import settings
from adaptive_rag.core.domain import KnowledgeGraphEntity
from adaptive_rag.core.interfaces import IKnowledgeGraph

logger = logging.getLogger(settings.LOGGER_NAME)

ENTITY_ID_PREFIX = "entity_"


def normalize_entity_id(name: str) -> str:
    """'Machine Learning' -> 'entity_machine_learning'"""
    return ENTITY_ID_PREFIX + re.sub(r"\s+", "_", name.strip().lower())


class InMemoryKnowledgeGraph(IKnowledgeGraph):

    def __init__(self, entities: Optional[Iterable[KnowledgeGraphEntity]] = None):
        self.graph = nx.DiGraph()
        if entities:
            self.load_entities(entities)

    def load_entities(self, entities: Iterable[KnowledgeGraphEntity]) -> None:
        """
        Add or replace entities and their outgoing relationships.
        Edge targets that are not loaded yet become placeholder nodes.
        """
        added = 0
        for entity in entities:
            self.graph.add_node(entity.id, entity=entity)
            self.graph.remove_edges_from(list(self.graph.out_edges(entity.id)))
            for rel in entity.relationships:
                if rel.target not in self.graph:
                    self.graph.add_node(rel.target, entity=None)
                self.graph.add_edge(
                    entity.id, rel.target,
                    relation=rel.relation,
                    strength=rel.strength,
                )
            added += 1
        logger.info(
            f"[GRAPH] Loaded {added} entities "
            f"({self.graph.number_of_nodes()} nodes, {self.graph.number_of_edges()} edges)"
        )

    def get_entity(self, entity_id: str) -> Optional[KnowledgeGraphEntity]:
        if entity_id not in self.graph:
            return None
        return self.graph.nodes[entity_id].get("entity")

    def traverse(self, entity_id: str, depth: int) -> List[KnowledgeGraphEntity]:
        """
        Breadth-first over outgoing and incoming edges up to `depth` hops.
        Returns each reachable known entity once, the start entity first.
        """
        if entity_id not in self.graph:
            return []

        visited = {entity_id}
        order = [entity_id]
        queue = deque([(entity_id, 0)])

        while queue:
            current, level = queue.popleft()
            if level >= depth:
                continue

            neighbors = [target for _, target in self.graph.out_edges(current)]
            neighbors += [source for source, _ in self.graph.in_edges(current)]
            for neighbor in neighbors:
                if neighbor not in visited:
                    visited.add(neighbor)
                    order.append(neighbor)
                    queue.append((neighbor, level + 1))

        entities = [self.get_entity(node_id) for node_id in order]
        return [e for e in entities if e is not None]

    def stats(self) -> dict:
        return {
            "nodes": self.graph.number_of_nodes(),
            "edges": self.graph.number_of_edges(),
        }
