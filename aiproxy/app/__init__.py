"""Server side of the AI request proxy."""
