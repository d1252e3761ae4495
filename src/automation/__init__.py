"""Command grammar, execution tracking and the copilot loop."""
