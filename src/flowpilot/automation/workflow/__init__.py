"""Flow graph domain.

- `models`: graph, run and validation types
- `node_config`: typed per-node-type configuration
- `conditions`: condition clause evaluation
- `validator`: structural validation
- `scheduler`: deferred continuations for DELAY nodes
- `engine`: the interpreter
"""

__all__: list[str] = []
