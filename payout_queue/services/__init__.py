"""Queue client, dispatcher and worker pool."""
