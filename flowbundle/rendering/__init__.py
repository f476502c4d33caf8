"""HTML rendering with stored references replaced by signed URLs."""
