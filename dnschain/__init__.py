"""Chainable DNS resolvers: local answers, rewriting, special-use names, upstream forwarding, metrics and query logging."""

__version__ = "0.1.0"

__all__ = [
    "chain",
    "client_names",
    "conditional",
    "custom_dns",
    "ede",
    "filtering",
    "fqdn_only",
    "hosts_file",
    "metrics",
    "model",
    "parallel",
    "query_logging",
    "rewriter",
    "sudn",
    "upstream",
]