"""Request admission: rate limits, pending job caps and quota gates."""
