"""Discord bot: verification button, operator commands and log-channel notifications."""
