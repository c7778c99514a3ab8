"""
Persistent state kept in the blob store.

This package is responsible for:
* The repository registry (``repositories`` blob) and its refresh from the network.
* The merged package index (``packages`` blob).
* Records of installed packages (``installed`` blob).
"""
