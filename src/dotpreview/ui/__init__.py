"""Qt desktop frontend for preview surfaces (requires PySide6)."""
