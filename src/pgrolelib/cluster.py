from .cluster_error import ConfigurationError
from .config import ClusterConfig
from .node import Node
from .node_base import Role


class Cluster:
    def __init__(self, config: ClusterConfig, node_class=Node):
        self.config = config
        self.nodes = [node_class(**config.node_kwargs(h)) for h in config.hosts]

    def node(self, name) -> Node:
        for n in self.nodes:
            if n.name == name:
                return n
        raise ConfigurationError(
            f"unknown server id {name!r}, configured: "
            f"{', '.join(n.name for n in self.nodes)}")

    def peer(self, node) -> Node:
        return next(n for n in self.nodes if n is not node)

    def local_node(self) -> Node:
        local = [n for n in self.nodes if n.is_local]
        if len(local) != 1:
            raise ConfigurationError(
                f"can't tell which configured host this is "
                f"({len(local)} local matches), use --node")
        return local[0]

    def designated(self, role: Role) -> Node:
        nodes = [n for n in self.nodes if n.believed_role == role]
        if len(nodes) != 1:
            raise ConfigurationError(
                f"exactly one host must have role {role.value}, "
                f"got {len(nodes)}")
        return nodes[0]
