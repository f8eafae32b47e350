"""Chat platform bridges."""
