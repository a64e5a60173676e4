"""Core proxy server implementation.

This package contains the core components of the static TCP proxy:
- Configuration and endpoint parsing
- Client address whitelisting
- Per-connection duplex relaying
- Listener and accept loop
- Worker and traffic statistics
- Exception handling

The core package does not depend on the command-line layer, so the
proxy can be embedded and driven from other code.
"""
