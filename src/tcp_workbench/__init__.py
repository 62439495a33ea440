"""Raw TCP connection workbench: scripted clients, servers, proxies and probes."""

__version__ = "0.1.0"
