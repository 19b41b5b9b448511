"""CLI command implementations for cascstore.

- examine: inspect shmem, index, BLTE, encoding and manifest files, and
  read keys from a local store
"""

from cascstore.commands.examine import examine

__all__ = ["examine"]
