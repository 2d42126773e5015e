"""Bar speed analysis backend."""
