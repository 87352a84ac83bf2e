"""Business resources counted against plan limits."""
