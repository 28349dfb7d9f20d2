"""Session resolution, storage and tracking commands."""
