"""In-process DAO collaborators: permission registry and action executor."""
