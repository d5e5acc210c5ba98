"""HTTP boundary and error taxonomy for Ask Tennis."""
