"""B+ tree index, root index and bucket metadata for an embeddable key/value store."""

__version__ = "0.1.0"
__all__ = ["bptree", "bucket_meta", "errors", "root_index"]