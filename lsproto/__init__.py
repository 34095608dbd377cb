"""Building blocks for Language Server Protocol servers: message framing, parsing, dispatch and a service loop."""

__version__ = "0.1.0"