"""Command line interface modules.

The command modules turn command-line options into a validated
``ProxyConfig`` and hand it to the core proxy server.
"""
