"""Services: plan generation, chat, profile synchronization and status."""
