"""
Ledgee invoice extraction package.

The package turns a photograph of a paper invoice into a normalized, validated record
ready for human review, driving a local or remote generative model through a staged
prompting protocol and resolving merchants, stores and agents against a local registry.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
