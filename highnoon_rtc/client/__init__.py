"""Client role: joining a room and answering the host."""
