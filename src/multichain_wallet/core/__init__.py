"""Front-end facing service and conversation state."""
