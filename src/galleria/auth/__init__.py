"""Authentication and role-based access for the gallery."""
