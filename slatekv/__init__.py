"""Write batches, table blocks, an in-memory object store and a disk-cached object store."""

__version__ = "0.1.0"