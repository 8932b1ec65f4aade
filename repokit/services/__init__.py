"""Services layer: the repository pattern over pluggable stores."""
