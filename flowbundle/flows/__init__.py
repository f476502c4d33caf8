"""Flow publishing, versioning and lookup."""
