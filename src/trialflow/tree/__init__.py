"""Trial tree parsing."""

from .parser import extract_node_records, parse_node, parse_nodes, parse_trial_document

__all__ = ["extract_node_records", "parse_node", "parse_nodes", "parse_trial_document"]
