"""HTTP surface: chunk-view tracking, client settlement and settlement history."""
