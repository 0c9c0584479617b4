"""
Descriptor services.

- descriptor: YAML load/dump and field helpers for compose documents
- normalizer: rewrites a raw descriptor into the installable rich/clean forms
- change_detector: structural diff that ignores environment value churn
"""
from dockflow.services.compose.descriptor import dump_descriptor, get_host_paths, load_descriptor
from dockflow.services.compose.normalizer import NormalizedDescriptor, normalize
from dockflow.services.compose.change_detector import has_structural_change

__all__ = [
    "NormalizedDescriptor",
    "dump_descriptor",
    "get_host_paths",
    "has_structural_change",
    "load_descriptor",
    "normalize",
]
