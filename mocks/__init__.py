"""Mock providers for running the conversation loop offline."""
